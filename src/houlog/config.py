"""
Recorder configuration.

Settings come from a dict, a JSON file, or HOULOG_* environment variables:
    HOULOG_HOST       geometry host address (default 127.0.0.1)
    HOULOG_PORT       geometry host port (default 9090)
    HOULOG_CONTAINER  container node path in the live session
    HOULOG_NODE       node name replaced on every live export
    HOULOG_TIMEOUT    socket timeout in seconds
    HOULOG_OUTPUT     geometry file for file exports
"""

import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .bridge import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_TIMEOUT
from .targets import DEFAULT_CONTAINER_PATH, DEFAULT_NODE_NAME


ENV_PREFIX = "HOULOG_"

_ENV_KEYS = {
    "host": "HOST",
    "port": "PORT",
    "container_path": "CONTAINER",
    "node_name": "NODE",
    "timeout": "TIMEOUT",
    "output_path": "OUTPUT",
}


@dataclass
class LoggerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    container_path: str = DEFAULT_CONTAINER_PATH
    node_name: str = DEFAULT_NODE_NAME
    timeout: float = DEFAULT_TIMEOUT
    output_path: Optional[str] = None

    def __post_init__(self):
        self.port = int(self.port)
        self.timeout = float(self.timeout)
        if not 0 <= self.port <= 65535:
            raise ValueError(f"port out of range: {self.port}")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")
        if not self.container_path.startswith("/"):
            raise ValueError(f"container_path must be absolute: {self.container_path}")
        if not self.node_name or "/" in self.node_name:
            raise ValueError(f"invalid node name: {self.node_name!r}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LoggerConfig":
        """
        Build a config from a mapping; unknown keys are rejected.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown config keys: {', '.join(unknown)}")
        return cls(**dict(data))

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        base: Optional["LoggerConfig"] = None
    ) -> "LoggerConfig":
        """Override ``base`` (default: defaults) with HOULOG_* variables."""
        environ = os.environ if environ is None else environ
        data = asdict(base) if base is not None else {}
        for key, suffix in _ENV_KEYS.items():
            value = environ.get(ENV_PREFIX + suffix)
            if value:
                data[key] = value
        return cls.from_dict(data)

    @classmethod
    def load(cls, filepath: Union[str, Path]) -> "LoggerConfig":
        """Load from a JSON object file."""
        with open(filepath, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{filepath}: config must be a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
