"""
Point geometry container and geometry file IO.

Provides functionality to:
- Hold a point count and named point attributes (numeric or string)
- Separate pending writes from committed data
- Write and read the JSON geometry layout understood by Houdini (.geo),
  optionally gzip-compressed (.geo.gz)

Only point attributes are supported; the recorder never creates vertices or
primitives.
"""

import gzip
import json
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np


GEO_FILE_VERSION = "20.0.0"

STORAGE_FLOAT = "fpreal32"
STORAGE_STRING = "string"


@dataclass
class PointAttribute:
    """A named per-point attribute."""
    name: str
    storage: str  # STORAGE_FLOAT or STORAGE_STRING
    tuple_size: int
    values: Union[np.ndarray, List[str]]

    @property
    def is_string(self) -> bool:
        return self.storage == STORAGE_STRING

    def tuples(self) -> List[Any]:
        """Values grouped per point."""
        if self.is_string:
            return list(self.values)
        arr = np.asarray(self.values, dtype=np.float32)
        if self.tuple_size == 1:
            return arr.reshape(-1).tolist()
        return arr.reshape(-1, self.tuple_size).tolist()


class PointGeometry:
    """
    Point cloud with named attributes.

    Writes go to a pending buffer and become visible through ``attributes``
    after ``commit``.
    """

    def __init__(self):
        self._pending_count = 0
        self._pending: "OrderedDict[str, PointAttribute]" = OrderedDict()
        self.point_count = 0
        self.attributes: "OrderedDict[str, PointAttribute]" = OrderedDict()
        self.committed = False

    def set_point_count(self, count: int) -> None:
        if count < 0:
            raise ValueError(f"point count must be >= 0, got {count}")
        self._pending_count = int(count)
        self._pending.clear()

    def add_attribute(
        self,
        name: str,
        storage: str,
        tuple_size: int,
        values: Any
    ) -> PointAttribute:
        """
        Add or replace a pending point attribute.

        Raises:
            ValueError: If the value count does not match the point count
        """
        if storage not in (STORAGE_FLOAT, STORAGE_STRING):
            raise ValueError(f"unsupported storage: {storage}")
        if tuple_size < 1:
            raise ValueError(f"tuple size must be >= 1, got {tuple_size}")

        if storage == STORAGE_STRING:
            stored: Union[np.ndarray, List[str]] = [str(v) for v in values]
            expected = self._pending_count
        else:
            stored = np.asarray(values, dtype=np.float32).reshape(-1)
            expected = self._pending_count * tuple_size

        if len(stored) != expected:
            raise ValueError(
                f"attribute {name!r} has {len(stored)} values, expected {expected}"
            )

        attrib = PointAttribute(name=name, storage=storage, tuple_size=tuple_size, values=stored)
        self._pending[name] = attrib
        return attrib

    def commit(self) -> None:
        self.point_count = self._pending_count
        self.attributes = OrderedDict(self._pending)
        self.committed = True

    def get(self, name: str) -> Optional[PointAttribute]:
        return self.attributes.get(name)


def _numeric_attribute_json(attrib: PointAttribute) -> List[Any]:
    header = ["scope", "public", "type", "numeric", "name", attrib.name, "options", {}]
    if attrib.name == "P":
        header[-1] = {"type": {"type": "string", "value": "point"}}

    if attrib.tuple_size == 1:
        values = ["size", 1, "storage", attrib.storage, "arrays", [attrib.tuples()]]
    else:
        values = ["size", attrib.tuple_size, "storage", attrib.storage, "tuples", attrib.tuples()]

    body = [
        "size", attrib.tuple_size,
        "storage", attrib.storage,
        "defaults", ["size", 1, "storage", "fpreal64", "values", [0]],
        "values", values,
    ]
    return [header, body]


def _string_attribute_json(attrib: PointAttribute) -> List[Any]:
    # strings are stored once and referenced by index
    table: Dict[str, int] = OrderedDict()
    indices = [table.setdefault(s, len(table)) for s in attrib.values]

    header = ["scope", "public", "type", "string", "name", attrib.name, "options", {}]
    body = [
        "size", 1,
        "storage", "int32",
        "strings", list(table),
        "indices", ["size", 1, "storage", "int32", "arrays", [indices]],
    ]
    return [header, body]


def geometry_to_json(geometry: PointGeometry) -> List[Any]:
    """Build the JSON geometry document for committed data."""
    point_attributes = []
    for attrib in geometry.attributes.values():
        if attrib.is_string:
            point_attributes.append(_string_attribute_json(attrib))
        else:
            point_attributes.append(_numeric_attribute_json(attrib))

    return [
        "fileversion", GEO_FILE_VERSION,
        "hasindex", False,
        "pointcount", geometry.point_count,
        "vertexcount", 0,
        "primitivecount", 0,
        "info", {
            "software": "houlog",
            "date": datetime.now().isoformat(timespec="seconds"),
            "artist": "",
            "hostname": "",
        },
        "topology", ["pointref", ["indices", []]],
        "attributes", ["pointattributes", point_attributes],
        "primitives", [],
    ]


def _pairs(flat: List[Any]) -> Dict[str, Any]:
    """Houdini stores maps as flat [key, value, key, value, ...] lists."""
    return {flat[i]: flat[i + 1] for i in range(0, len(flat) - 1, 2)}


def geometry_from_json(document: List[Any]) -> PointGeometry:
    """
    Parse a JSON geometry document produced by ``geometry_to_json``.

    Raises:
        ValueError: If the document is not a point geometry this module wrote
    """
    if not isinstance(document, list):
        raise ValueError("geometry document must be a JSON array")
    top = _pairs(document)
    if "pointcount" not in top:
        raise ValueError("geometry document has no pointcount")

    geometry = PointGeometry()
    geometry.set_point_count(int(top["pointcount"]))

    attributes = _pairs(top.get("attributes", []))
    for header_list, body_list in attributes.get("pointattributes", []):
        header = _pairs(header_list)
        body = _pairs(body_list)
        name = header["name"]

        if header["type"] == "string":
            strings = body["strings"]
            index_block = _pairs(body["indices"])
            indices = index_block["arrays"][0] if index_block.get("arrays") else []
            geometry.add_attribute(name, STORAGE_STRING, 1, [strings[i] for i in indices])
        elif header["type"] == "numeric":
            size = int(body["size"])
            value_block = _pairs(body["values"])
            if "tuples" in value_block:
                values = value_block["tuples"]
            else:
                values = value_block["arrays"][0] if value_block.get("arrays") else []
            geometry.add_attribute(name, STORAGE_FLOAT, size, values)
        else:
            raise ValueError(f"unsupported attribute type: {header['type']}")

    geometry.commit()
    return geometry


def write_geo(geometry: PointGeometry, path: Union[str, Path]) -> Path:
    """
    Write committed geometry to ``path``.

    A ``.gz`` suffix gzips the output. Parent directories are created.

    Returns:
        The written path

    Raises:
        ValueError: If an attribute holds NaN or infinite values
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(geometry_to_json(geometry), separators=(",", ":"), allow_nan=False)

    if path.suffix == ".gz":
        with gzip.open(path, "wt", encoding="utf-8") as f:
            f.write(text)
    else:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    return path


def read_geo(path: Union[str, Path]) -> PointGeometry:
    """Read a geometry file written by ``write_geo``."""
    path = Path(path)
    if path.suffix == ".gz":
        with gzip.open(path, "rt", encoding="utf-8") as f:
            document = json.load(f)
    else:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    return geometry_from_json(document)
