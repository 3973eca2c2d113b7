"""
Export targets.

A target turns ExportColumns into a committed geometry on some host:
- FileTarget creates a transient isolated host per export, writes the
  columns into a fresh node and saves it to a geometry file
- LiveSessionTarget replaces a node inside an already running host session

Both go through exporter.write_columns; they differ only in where the node
comes from and whether the result is persisted.
"""

import logging
from pathlib import Path
from typing import Callable, Optional, Union

from .errors import HostCommunicationError
from .exporter import ExportColumns, write_columns
from .host import HostGeometry, HostNode, HostSession, LocalSession


logger = logging.getLogger(__name__)

DEFAULT_CONTAINER_PATH = "/obj/recordings"
DEFAULT_NODE_NAME = "recording"


def _cooked_geometry(node: HostNode) -> HostGeometry:
    node.cook()
    geometry = node.geometry()
    if geometry is None:
        raise HostCommunicationError(f"no geometry on node {node.path}")
    return geometry


class ExportTarget:
    """Destination of an export."""

    def commit(self, columns: ExportColumns) -> None:
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held for the logger's lifetime."""

    def describe(self) -> str:
        return type(self).__name__


class FileTarget(ExportTarget):
    """Write exports to a geometry file through a transient host."""

    def __init__(
        self,
        path: Union[str, Path],
        session_factory: Callable[[], HostSession] = LocalSession
    ):
        """
        Args:
            path: Output geometry file (.geo, or .geo.gz for compressed)
            session_factory: Creates the isolated host used for one export
        """
        self.path = Path(path)
        self._session_factory = session_factory

    def commit(self, columns: ExportColumns) -> None:
        session = self._session_factory()
        try:
            container = session.create_node("Object/geo")
            node = session.create_node("null", parent=container)
            geometry = _cooked_geometry(node)
            write_columns(geometry, columns)
            geometry.commit()
            geometry.save_to_file(self.path)
        finally:
            session.close()
        logger.info("Exported %d points to %s", columns.point_count, self.path)

    def describe(self) -> str:
        return f"file {self.path}"


class LiveSessionTarget(ExportTarget):
    """
    Replace a node in a running host session on every export.

    The session is owned by the target and closed with it.
    """

    def __init__(
        self,
        session: HostSession,
        container_path: str = DEFAULT_CONTAINER_PATH,
        node_name: str = DEFAULT_NODE_NAME
    ):
        self.session = session
        self.container_path = container_path
        self.node_name = node_name

    def commit(self, columns: ExportColumns) -> None:
        container = self.session.get_node(self.container_path)
        if container is None:
            raise HostCommunicationError(f"container node not found: {self.container_path}")

        existing = self.session.get_node(self.node_name, parent=container)
        if existing is not None:
            self.session.delete_node(existing)

        node = self.session.create_node("null", parent=container, label=self.node_name)
        geometry = _cooked_geometry(node)
        write_columns(geometry, columns)
        geometry.commit()
        logger.info("Pushed %d points to %s", columns.point_count, node.path)

    def close(self) -> None:
        self.session.close()

    def describe(self) -> str:
        return f"live session {self.container_path}/{self.node_name}"
