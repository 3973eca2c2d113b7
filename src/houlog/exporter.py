"""
Flattening of the frame buffer into point attribute columns.

Every entry becomes one point. Rows are produced by a single walk over
frames in order and entries in insertion order; all five columns come from
that one walk so row i of every column describes the same entry.

Attribute names and arities are read by downstream parsers:
    P         float x3  representative position
    name      string    entry name
    kind      string    variant kind tag
    time      float     frame index + 1
    metadata  string    JSON metadata document
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Sequence

import numpy as np

if TYPE_CHECKING:
    from .host import HostGeometry
    from .logger import FrameData


ATTRIB_POSITION = "P"
ATTRIB_NAME = "name"
ATTRIB_KIND = "kind"
ATTRIB_TIME = "time"
ATTRIB_METADATA = "metadata"

EXPORT_ATTRIBUTES = (ATTRIB_POSITION, ATTRIB_NAME, ATTRIB_KIND, ATTRIB_TIME, ATTRIB_METADATA)


@dataclass
class ExportColumns:
    """Parallel per-point columns of one export."""
    positions: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float32))
    names: List[str] = field(default_factory=list)
    kinds: List[str] = field(default_factory=list)
    times: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float32))
    metadata: List[str] = field(default_factory=list)

    @property
    def point_count(self) -> int:
        return len(self.names)

    def __len__(self) -> int:
        return self.point_count


def build_columns(frames: Sequence["FrameData"]) -> ExportColumns:
    """
    Flatten frames into export columns.

    Args:
        frames: Frame buffer in frame order

    Returns:
        ExportColumns with one row per entry; times are 1-based frame numbers

    Raises:
        SerializationError: If an entry's metadata cannot be encoded
    """
    total = sum(len(frame.entries) for frame in frames)
    positions = np.zeros((total, 3), dtype=np.float32)
    times = np.zeros(total, dtype=np.float32)
    names: List[str] = []
    kinds: List[str] = []
    metadata: List[str] = []

    row = 0
    for frame_index, frame in enumerate(frames):
        for entry in frame.entries:
            value = entry.value
            positions[row] = value.position()
            names.append(entry.name)
            kinds.append(value.kind())
            times[row] = frame_index + 1
            metadata.append(entry.metadata if entry.metadata is not None else value.as_json())
            row += 1

    return ExportColumns(
        positions=positions,
        names=names,
        kinds=kinds,
        times=times,
        metadata=metadata,
    )


def write_columns(geometry: "HostGeometry", columns: ExportColumns) -> None:
    """
    Declare the point count and write all five attributes.

    Attributes are declared even when there are no points, so an empty
    recording still produces a complete geometry.
    """
    geometry.set_point_count(columns.point_count)
    geometry.add_numeric_attribute(ATTRIB_POSITION, 3, columns.positions.reshape(-1))
    geometry.add_string_attribute(ATTRIB_NAME, columns.names)
    geometry.add_string_attribute(ATTRIB_KIND, columns.kinds)
    geometry.add_numeric_attribute(ATTRIB_TIME, 1, columns.times)
    geometry.add_string_attribute(ATTRIB_METADATA, columns.metadata)
