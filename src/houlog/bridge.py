"""
Socket bridge to a running geometry host.

Provides functionality to:
- Drive a remote host session over NDJSON on TCP (RemoteSession)
- Serve an in-process LocalSession over the same protocol (BridgeServer),
  optionally writing committed geometry to snapshot files

Protocol: one JSON object per line.
    request:  {"cmd": "...", "request_id": "...", "params": {...}}
    response: {"request_id": "...", "ack": true, "result": {...}}
              {"request_id": "...", "ack": false, "error_code": N, "error_message": "..."}
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Sequence, Union, cast

import numpy as np

from .errors import HostCommunicationError
from .geo import write_geo
from .host import LocalNode, LocalSession


logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9090
DEFAULT_TIMEOUT = 5.0

ERROR_INVALID_JSON = 1
ERROR_INVALID_REQUEST = 2
ERROR_UNKNOWN_CMD = 3
ERROR_HOST = 4
ERROR_INTERNAL = 7

MAX_LINE_BYTES = 64 * 1024 * 1024
POLL_SECONDS = 0.2

COMMANDS = {
    "ping",
    "get_node",
    "delete_node",
    "create_node",
    "cook",
    "has_geometry",
    "set_point_count",
    "add_attribute",
    "commit",
    "save",
}


class RemoteGeometry:
    """HostGeometry of a node in a RemoteSession."""

    def __init__(self, session: RemoteSession, path: str):
        self._session = session
        self.path = path

    def set_point_count(self, count: int) -> None:
        self._session.request("set_point_count", {"path": self.path, "count": int(count)})

    def add_numeric_attribute(self, name: str, tuple_size: int, values: Sequence[float]) -> None:
        self._session.request("add_attribute", {
            "path": self.path,
            "name": name,
            "type": "numeric",
            "tuple_size": int(tuple_size),
            "values": np.asarray(values, dtype=np.float64).reshape(-1).tolist(),
        })

    def add_string_attribute(self, name: str, values: Sequence[str]) -> None:
        self._session.request("add_attribute", {
            "path": self.path,
            "name": name,
            "type": "string",
            "tuple_size": 1,
            "values": [str(v) for v in values],
        })

    def commit(self) -> None:
        self._session.request("commit", {"path": self.path})

    def save_to_file(self, path: Union[str, Path]) -> None:
        self._session.request("save", {"path": self.path, "file": str(path)})


class RemoteNode:
    """HostNode in a RemoteSession, addressed by path."""

    def __init__(self, session: RemoteSession, path: str):
        self._session = session
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def cook(self) -> None:
        self._session.request("cook", {"path": self._path})

    def geometry(self) -> Optional[RemoteGeometry]:
        result = self._session.request("has_geometry", {"path": self._path})
        if not result.get("has_geometry"):
            return None
        return RemoteGeometry(self._session, self._path)


class RemoteSession:
    """
    Host session reached over a persistent TCP connection.

    Usage:
        session = RemoteSession.connect("127.0.0.1", 9090)
        container = session.get_node("/obj/recordings")
        node = session.create_node("null", parent=container, label="recording")
        session.close()
    """

    def __init__(self, sock: socket.socket, timeout: float = DEFAULT_TIMEOUT):
        self._sock: Optional[socket.socket] = sock
        self._sock.settimeout(timeout)
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self.timeout = timeout

    @classmethod
    def connect(
        cls,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT
    ) -> RemoteSession:
        """
        Open a session and verify the peer answers a ping.

        Raises:
            HostCommunicationError: If the host cannot be reached
        """
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except OSError as e:
            raise HostCommunicationError(f"could not connect to geometry host at {host}:{port}: {e}") from e

        session = cls(sock, timeout=timeout)
        try:
            session.ping()
        except HostCommunicationError:
            session.close()
            raise
        logger.info("Connected to geometry host at %s:%d", host, port)
        return session

    @property
    def closed(self) -> bool:
        return self._sock is None

    def _recv_line(self) -> bytes:
        assert self._sock is not None
        while True:
            newline_idx = self._buffer.find(b"\n")
            if newline_idx >= 0:
                line = bytes(self._buffer[:newline_idx])
                del self._buffer[: newline_idx + 1]
                return line
            chunk = self._sock.recv(65536)
            if not chunk:
                raise ConnectionError("Socket closed by peer before newline")
            self._buffer.extend(chunk)

    def _recv_response(self, cmd: str, request_id: str) -> dict[str, Any]:
        """Read lines until the response to ``request_id`` arrives."""
        while True:
            line = self._recv_line()
            try:
                response = json.loads(line.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise HostCommunicationError(f"{cmd}: invalid response from host: {line[:200]!r}") from e

            if not isinstance(response, dict):
                raise HostCommunicationError(f"{cmd}: response is not an object")
            # errors for unparseable requests carry an empty id
            if response.get("request_id") in (request_id, ""):
                return response
            logger.debug("Discarding stale response for request %r", response.get("request_id"))

    def _drop_connection(self) -> None:
        sock = self._sock
        self._sock = None
        self._buffer.clear()
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

    def request(self, cmd: str, params: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
        """
        Send one command and wait for its response.

        Returns:
            The ``result`` object of an acknowledged response

        Raises:
            HostCommunicationError: On transport failure or a negative ack
        """
        request_id = str(uuid.uuid4())
        payload = json.dumps(
            {"cmd": cmd, "request_id": request_id, "params": dict(params or {})},
            separators=(",", ":"),
        ).encode("utf-8") + b"\n"

        with self._lock:
            if self._sock is None:
                raise HostCommunicationError("session is closed")
            try:
                self._sock.sendall(payload)
                response = self._recv_response(cmd, request_id)
            except socket.timeout as e:
                # the late reply is skipped by the next request
                raise HostCommunicationError(f"{cmd}: geometry host did not answer in {self.timeout}s") from e
            except (OSError, ConnectionError) as e:
                self._drop_connection()
                raise HostCommunicationError(f"{cmd}: connection to geometry host lost: {e}") from e

        if response.get("ack") is not True:
            raise HostCommunicationError(
                f"{cmd} failed ({response.get('error_code')}): {response.get('error_message')}"
            )
        return cast(dict, response.get("result") or {})

    def ping(self) -> None:
        self.request("ping")

    def get_node(self, path: str, parent: Optional[Any] = None) -> Optional[RemoteNode]:
        result = self.request("get_node", {
            "path": path,
            "parent": parent.path if parent is not None else None,
        })
        found = result.get("path")
        return RemoteNode(self, found) if found else None

    def delete_node(self, node: Any) -> None:
        self.request("delete_node", {"path": node.path})

    def create_node(
        self,
        node_type: str,
        parent: Optional[Any] = None,
        label: Optional[str] = None
    ) -> RemoteNode:
        result = self.request("create_node", {
            "type": node_type,
            "parent": parent.path if parent is not None else None,
            "label": label,
        })
        return RemoteNode(self, result["path"])

    def close(self) -> None:
        with self._lock:
            self._drop_connection()


@dataclass
class BridgeServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    containers: Sequence[str] = field(default_factory=lambda: ("/obj/recordings",))
    snapshot_dir: Optional[str] = None


class _RequestError(Exception):
    def __init__(self, error_code: int, message: str):
        super().__init__(message)
        self.error_code = error_code


class BridgeServer:
    """
    Serve a LocalSession to RemoteSession clients.

    Usage:
        server = BridgeServer(BridgeServerConfig(port=9090, snapshot_dir="./live"))
        server.start()          # background thread
        ...
        server.shutdown()
    """

    def __init__(self, config: Optional[BridgeServerConfig] = None, session: Optional[LocalSession] = None):
        self._config = config or BridgeServerConfig()
        self.session = session or LocalSession(containers=self._config.containers)
        self._server_socket: Optional[socket.socket] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._connections: set[socket.socket] = set()
        self._conn_lock = threading.Lock()
        self.commit_count = 0

        self._handlers: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            "ping": lambda params: {},
            "get_node": self._handle_get_node,
            "delete_node": self._handle_delete_node,
            "create_node": self._handle_create_node,
            "cook": self._handle_cook,
            "has_geometry": self._handle_has_geometry,
            "set_point_count": self._handle_set_point_count,
            "add_attribute": self._handle_add_attribute,
            "commit": self._handle_commit,
            "save": self._handle_save,
        }

    @property
    def address(self) -> tuple[str, int]:
        """Bound address; useful when the configured port is 0."""
        if self._server_socket is None:
            return (self._config.host, self._config.port)
        return cast(tuple, self._server_socket.getsockname()[:2])

    def bind(self) -> tuple[str, int]:
        self._server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server_socket.bind((self._config.host, self._config.port))
        self._server_socket.listen()
        self._server_socket.settimeout(POLL_SECONDS)
        self._running = True
        return self.address

    def start(self) -> tuple[str, int]:
        """Bind and serve from a daemon thread. Returns the bound address."""
        address = self.bind()
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()
        return address

    def serve_forever(self) -> None:
        if self._server_socket is None:
            self.bind()
        try:
            self._accept_loop()
        finally:
            self.shutdown()

    def _accept_loop(self) -> None:
        logger.info("Geometry bridge listening on %s:%d", *self.address)
        while self._running:
            server_socket = self._server_socket
            if server_socket is None:
                break
            try:
                conn, addr = server_socket.accept()
            except socket.timeout:
                continue
            except OSError:
                break

            logger.debug("Bridge client connected from %s:%d", *addr[:2])
            with self._conn_lock:
                self._connections.add(conn)
            thread = threading.Thread(target=self._handle_connection, args=(conn,), daemon=True)
            thread.start()

    def shutdown(self) -> None:
        self._running = False
        if self._server_socket is not None:
            try:
                self._server_socket.close()
            except OSError:
                pass
            self._server_socket = None
        with self._conn_lock:
            connections = list(self._connections)
            self._connections.clear()
        for conn in connections:
            try:
                # peers see EOF right away
                conn.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                conn.close()
            except OSError:
                pass
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
            self._thread = None

    def _handle_connection(self, conn: socket.socket) -> None:
        buffer = bytearray()
        conn.settimeout(POLL_SECONDS)

        try:
            while self._running:
                try:
                    chunk = conn.recv(65536)
                except socket.timeout:
                    continue
                except OSError:
                    break

                if not chunk:
                    break
                buffer.extend(chunk)

                while True:
                    newline_idx = buffer.find(b"\n")
                    if newline_idx < 0:
                        break
                    raw_line = bytes(buffer[:newline_idx])
                    del buffer[: newline_idx + 1]
                    self._send_response(conn, self._process_line(raw_line))

                if len(buffer) > MAX_LINE_BYTES:
                    self._send_response(conn, self._error_response("", ERROR_INVALID_JSON, "invalid_json: line_too_long"))
                    buffer.clear()
        except OSError as e:
            logger.debug("Bridge connection dropped: %s", e)
        finally:
            with self._conn_lock:
                self._connections.discard(conn)
            try:
                conn.close()
            except OSError:
                pass

    def _process_line(self, raw_line: bytes) -> dict[str, object]:
        try:
            request = json.loads(raw_line.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return self._error_response("", ERROR_INVALID_JSON, "invalid_json")

        if not isinstance(request, dict):
            return self._error_response("", ERROR_INVALID_REQUEST, "invalid_request: expected_object")

        request_id = request.get("request_id")
        if not isinstance(request_id, str) or not request_id:
            return self._error_response("", ERROR_INVALID_REQUEST, "invalid_request: request_id")

        cmd = request.get("cmd")
        if cmd not in COMMANDS:
            return self._error_response(request_id, ERROR_UNKNOWN_CMD, f"unknown_cmd: {cmd}")

        params = request.get("params") or {}
        if not isinstance(params, dict):
            return self._error_response(request_id, ERROR_INVALID_REQUEST, "invalid_request: params_must_be_object")

        try:
            result = self._handlers[cmd](params)
        except _RequestError as e:
            return self._error_response(request_id, e.error_code, str(e))
        except HostCommunicationError as e:
            return self._error_response(request_id, ERROR_HOST, str(e))
        except (KeyError, TypeError, ValueError) as e:
            return self._error_response(request_id, ERROR_INVALID_REQUEST, f"invalid_request: {e}")
        except Exception as e:
            logger.exception("Bridge command %s failed", cmd)
            return self._error_response(request_id, ERROR_INTERNAL, f"internal_error: {e}")

        return {"request_id": request_id, "ack": True, "result": result}

    @staticmethod
    def _error_response(request_id: str, error_code: int, error_message: str) -> dict[str, object]:
        return {
            "request_id": request_id,
            "ack": False,
            "error_code": error_code,
            "error_message": error_message,
        }

    @staticmethod
    def _send_response(conn: socket.socket, response: Mapping[str, object]) -> None:
        payload = json.dumps(response, separators=(",", ":")) + "\n"
        conn.sendall(payload.encode("utf-8"))

    def _node(self, path: Optional[str]) -> Optional[LocalNode]:
        if not path:
            return None
        node = self.session.get_node(path)
        if node is None:
            raise _RequestError(ERROR_HOST, f"node not found: {path}")
        return node

    def _geometry(self, params: dict[str, Any]):
        node = self._node(params["path"])
        geometry = node.geometry() if node is not None else None
        if geometry is None:
            raise _RequestError(ERROR_HOST, f"{params['path']}: no geometry (cook the node first)")
        return node, geometry

    def _handle_get_node(self, params: dict[str, Any]) -> dict[str, Any]:
        parent = self._node(params.get("parent"))
        node = self.session.get_node(params["path"], parent=parent)
        return {"path": node.path if node is not None else None}

    def _handle_delete_node(self, params: dict[str, Any]) -> dict[str, Any]:
        self.session.delete_node(self._node(params["path"]))
        return {}

    def _handle_create_node(self, params: dict[str, Any]) -> dict[str, Any]:
        node = self.session.create_node(
            params["type"],
            parent=self._node(params.get("parent")),
            label=params.get("label"),
        )
        return {"path": node.path}

    def _handle_cook(self, params: dict[str, Any]) -> dict[str, Any]:
        self._node(params["path"]).cook()
        return {}

    def _handle_has_geometry(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"has_geometry": self._node(params["path"]).geometry() is not None}

    def _handle_set_point_count(self, params: dict[str, Any]) -> dict[str, Any]:
        _, geometry = self._geometry(params)
        geometry.set_point_count(int(params["count"]))
        return {}

    def _handle_add_attribute(self, params: dict[str, Any]) -> dict[str, Any]:
        _, geometry = self._geometry(params)
        if params["type"] == "string":
            geometry.add_string_attribute(params["name"], params["values"])
        elif params["type"] == "numeric":
            geometry.add_numeric_attribute(params["name"], int(params["tuple_size"]), params["values"])
        else:
            raise _RequestError(ERROR_INVALID_REQUEST, f"invalid_request: attribute type {params['type']}")
        return {}

    def _handle_commit(self, params: dict[str, Any]) -> dict[str, Any]:
        node, geometry = self._geometry(params)
        geometry.commit()
        self.commit_count += 1
        if self._config.snapshot_dir:
            snapshot = Path(self._config.snapshot_dir) / f"{node.name}.geo"
            write_geo(geometry.data, snapshot)
            logger.info("Wrote snapshot of %s to %s", node.path, snapshot)
        return {"point_count": geometry.data.point_count}

    def _handle_save(self, params: dict[str, Any]) -> dict[str, Any]:
        _, geometry = self._geometry(params)
        geometry.save_to_file(params["file"])
        return {}
