import os
import socket
import sys
from typing import List

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from houlog import api
from houlog.errors import HostCommunicationError
from houlog.exporter import ExportColumns
from houlog.logger import LoggerSlot
from houlog.targets import ExportTarget


class CollectingTarget(ExportTarget):
    """Keeps exported columns in memory; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.commits: List[ExportColumns] = []
        self.fail = fail
        self.closed = False

    def commit(self, columns: ExportColumns) -> None:
        if self.fail:
            raise HostCommunicationError("host unreachable")
        self.commits.append(columns)

    def close(self) -> None:
        self.closed = True

    @property
    def last(self) -> ExportColumns:
        return self.commits[-1]


@pytest.fixture()
def slot() -> LoggerSlot:
    return LoggerSlot()


@pytest.fixture()
def target() -> CollectingTarget:
    return CollectingTarget()


@pytest.fixture()
def process_slot(monkeypatch):
    """Fresh process-wide slot; the installed logger is shut down afterwards."""
    fresh = LoggerSlot()
    monkeypatch.setattr(api, "PROCESS_SLOT", fresh)
    yield fresh
    api.shutdown()


def get_free_tcp_port(host: str = "127.0.0.1") -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])
