"""Map Kubernetes nodes to driver node IDs."""

from __future__ import annotations

from kubernetes_asyncio.client import V1Node

from ..exceptions import NodeIDError

__all__ = ["NodeIDResolver"]


class NodeIDResolver:
    """Find the driver's identifier for a node.

    The node plugin of the driver registers the identifier it uses for a node
    as an annotation on the ``Node`` object, keyed by driver name.

    Parameters
    ----------
    annotation
        Node annotation holding the node ID for this driver.
    """

    def __init__(self, annotation: str) -> None:
        self._annotation = annotation

    def resolve(self, node: V1Node) -> str:
        """Return the driver's node ID for a node.

        Parameters
        ----------
        node
            Kubernetes node.

        Returns
        -------
        str
            Node ID to pass to the driver.

        Raises
        ------
        NodeIDError
            Raised if the node has no (or an empty) annotation for this
            driver.
        """
        annotations = node.metadata.annotations or {}
        node_id = annotations.get(self._annotation)
        if not node_id:
            raise NodeIDError(node.metadata.name)
        return node_id
