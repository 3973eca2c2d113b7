"""
Geometry host interface and an in-process host.

The recorder talks to a geometry-processing host through three small
protocols:
- HostSession: node lookup, creation and deletion
- HostNode: cook and geometry access
- HostGeometry: point count, attribute writes, commit and save

LocalSession implements them in-process on top of geo.PointGeometry. It is
what the file export uses as its transient host. bridge.RemoteSession
implements the same protocols over a socket.
"""

import logging
import posixpath
import threading
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Union

from .errors import HostCommunicationError
from .geo import STORAGE_FLOAT, STORAGE_STRING, PointGeometry, write_geo


logger = logging.getLogger(__name__)

OBJ_ROOT = "/obj"


class HostGeometry(Protocol):
    def set_point_count(self, count: int) -> None: ...

    def add_numeric_attribute(self, name: str, tuple_size: int, values: Sequence[float]) -> None: ...

    def add_string_attribute(self, name: str, values: Sequence[str]) -> None: ...

    def commit(self) -> None: ...

    def save_to_file(self, path: Union[str, Path]) -> None: ...


class HostNode(Protocol):
    @property
    def path(self) -> str: ...

    def cook(self) -> None: ...

    def geometry(self) -> Optional[HostGeometry]: ...


class HostSession(Protocol):
    def get_node(self, path: str, parent: Optional[HostNode] = None) -> Optional[HostNode]: ...

    def delete_node(self, node: HostNode) -> None: ...

    def create_node(
        self,
        node_type: str,
        parent: Optional[HostNode] = None,
        label: Optional[str] = None
    ) -> HostNode: ...

    def close(self) -> None: ...


class LocalGeometry:
    """HostGeometry backed by a PointGeometry."""

    def __init__(self, node: "LocalNode"):
        self._node = node
        self.data = PointGeometry()

    def set_point_count(self, count: int) -> None:
        try:
            self.data.set_point_count(count)
        except ValueError as e:
            raise HostCommunicationError(str(e)) from e

    def add_numeric_attribute(self, name: str, tuple_size: int, values: Sequence[float]) -> None:
        try:
            self.data.add_attribute(name, STORAGE_FLOAT, tuple_size, values)
        except ValueError as e:
            raise HostCommunicationError(f"attribute write rejected: {e}") from e

    def add_string_attribute(self, name: str, values: Sequence[str]) -> None:
        try:
            self.data.add_attribute(name, STORAGE_STRING, 1, values)
        except ValueError as e:
            raise HostCommunicationError(f"attribute write rejected: {e}") from e

    def commit(self) -> None:
        self.data.commit()

    def save_to_file(self, path: Union[str, Path]) -> None:
        if not self.data.committed:
            raise HostCommunicationError(f"{self._node.path}: nothing committed to save")
        try:
            write_geo(self.data, path)
        except (OSError, ValueError) as e:
            raise HostCommunicationError(f"could not save geometry to {path}: {e}") from e
        logger.debug("Saved %s to %s", self._node.path, path)


class LocalNode:
    """A node in a LocalSession."""

    def __init__(self, path: str, node_type: str):
        self._path = path
        self.node_type = node_type
        self.cooked = False
        self._geometry: Optional[LocalGeometry] = None
        if self.is_sop:
            self._geometry = LocalGeometry(self)

    @property
    def path(self) -> str:
        return self._path

    @property
    def name(self) -> str:
        return posixpath.basename(self._path)

    @property
    def is_sop(self) -> bool:
        return not self.node_type.startswith("Object/")

    def cook(self) -> None:
        self.cooked = True

    def geometry(self) -> Optional[LocalGeometry]:
        """Geometry of a cooked SOP node; None otherwise."""
        if not self.cooked:
            return None
        return self._geometry


class LocalSession:
    """
    Isolated in-process geometry host.

    Usage:
        session = LocalSession()
        geo = session.create_node("Object/geo")
        node = session.create_node("null", parent=geo)
        node.cook()
        node.geometry().set_point_count(0)
    """

    def __init__(self, containers: Sequence[str] = ()):
        """
        Initialize the session.

        Args:
            containers: Extra ``Object/geo`` node paths to create up front,
                e.g. "/obj/recordings"
        """
        self._lock = threading.RLock()
        self._nodes: Dict[str, LocalNode] = {OBJ_ROOT: LocalNode(OBJ_ROOT, "Object/root")}
        self._counters: Dict[str, int] = {}
        self.closed = False

        for path in containers:
            parent_path, name = posixpath.split(path.rstrip("/"))
            parent = self._require(parent_path)
            self.create_node("Object/geo", parent=parent, label=name)

    def _require(self, path: str) -> LocalNode:
        node = self._nodes.get(path)
        if node is None:
            raise HostCommunicationError(f"node not found: {path}")
        return node

    def _check_open(self) -> None:
        if self.closed:
            raise HostCommunicationError("session is closed")

    @staticmethod
    def _resolve(path: str, parent: Optional[HostNode]) -> str:
        if parent is None or path.startswith("/"):
            return posixpath.normpath(path)
        return posixpath.normpath(posixpath.join(parent.path, path))

    def get_node(self, path: str, parent: Optional[HostNode] = None) -> Optional[LocalNode]:
        with self._lock:
            self._check_open()
            return self._nodes.get(self._resolve(path, parent))

    def delete_node(self, node: HostNode) -> None:
        with self._lock:
            self._check_open()
            target = self._require(node.path)
            if target.path == OBJ_ROOT:
                raise HostCommunicationError("cannot delete the object root")
            prefix = target.path + "/"
            for path in [p for p in self._nodes if p == target.path or p.startswith(prefix)]:
                del self._nodes[path]

    def create_node(
        self,
        node_type: str,
        parent: Optional[HostNode] = None,
        label: Optional[str] = None
    ) -> LocalNode:
        """
        Create a node.

        Object nodes ("Object/geo") go under /obj unless a parent is given;
        SOP nodes ("null") need an object node as parent.

        Raises:
            HostCommunicationError: If the parent is missing or unsuitable,
                or the label is taken
        """
        with self._lock:
            self._check_open()
            is_object = node_type.startswith("Object/")
            if parent is None:
                if not is_object:
                    raise HostCommunicationError(f"{node_type} node needs a parent")
                parent_node = self._nodes[OBJ_ROOT]
            else:
                parent_node = self._require(parent.path)
            if parent_node.is_sop:
                raise HostCommunicationError(f"{parent_node.path} cannot contain child nodes")
            if not is_object and parent_node.path == OBJ_ROOT:
                raise HostCommunicationError(f"{node_type} node must live inside a geo node")

            if label is None:
                base = node_type.split("/")[-1]
                count = self._counters.get(base, 0)
                while True:
                    count += 1
                    name = f"{base}{count}"
                    if posixpath.join(parent_node.path, name) not in self._nodes:
                        break
                self._counters[base] = count
            else:
                name = label

            path = posixpath.join(parent_node.path, name)
            if path in self._nodes:
                raise HostCommunicationError(f"node already exists: {path}")

            node = LocalNode(path, node_type)
            self._nodes[path] = node
            return node

    def node_paths(self) -> List[str]:
        with self._lock:
            return sorted(self._nodes)

    def close(self) -> None:
        with self._lock:
            self.closed = True
            self._nodes.clear()
