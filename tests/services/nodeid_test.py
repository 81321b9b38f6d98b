"""Tests for mapping nodes to driver node IDs."""

from __future__ import annotations

import pytest
from kubernetes_asyncio.client import V1Node, V1ObjectMeta

from csiattacher.exceptions import AttachmentInputError, NodeIDError
from csiattacher.models.domain.attachment import get_node_id_annotation
from csiattacher.services.nodeid import NodeIDResolver

from ..support.objects import DRIVER_NAME, NODE_ID, build_node


def test_resolve() -> None:
    resolver = NodeIDResolver(get_node_id_annotation(DRIVER_NAME))
    assert resolver.resolve(build_node()) == NODE_ID


def test_missing() -> None:
    resolver = NodeIDResolver(get_node_id_annotation(DRIVER_NAME))
    with pytest.raises(NodeIDError) as excinfo:
        resolver.resolve(build_node(node_id=None))
    assert str(excinfo.value) == 'node "node1" has no NodeID annotation'
    assert isinstance(excinfo.value, AttachmentInputError)

    # Annotations for other drivers and empty values are ignored.
    annotations = {
        "nodeid.csi.volume.kubernetes.io/other.example.com": "other",
        get_node_id_annotation(DRIVER_NAME): "",
    }
    node = V1Node(metadata=V1ObjectMeta(name="node2", annotations=annotations))
    with pytest.raises(NodeIDError) as excinfo:
        resolver.resolve(node)
    assert excinfo.value.node == "node2"
