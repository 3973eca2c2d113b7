"""
Reading exported recordings back.

Provides functionality to:
- Load a geometry file written by a file export
- Group points back into named entries per frame
- Decode metadata documents into loggable variants by kind
- Step through frames, optionally at a fixed frame rate
- Validate a recording against the attribute contract
"""

import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Tuple, Union

import numpy as np

from .exporter import (
    ATTRIB_KIND,
    ATTRIB_METADATA,
    ATTRIB_NAME,
    ATTRIB_POSITION,
    ATTRIB_TIME,
    EXPORT_ATTRIBUTES,
)
from .geo import read_geo
from .loggable import Loggable, decode_metadata, loggable_for_kind


@dataclass
class RecordedEntry:
    """One exported point."""
    name: str
    kind: str
    time: float
    position: np.ndarray
    metadata: Dict[str, Any]

    @property
    def frame_index(self) -> int:
        """0-based frame index (times are 1-based)."""
        return int(round(self.time)) - 1


class RecordingReader:
    """
    Read a recorded geometry file.

    Usage:
        reader = RecordingReader("debug.geo")
        for time, entries in reader.replay(realtime=False):
            for entry in entries:
                value = reader.decode(entry)
    """

    def __init__(self, path: Union[str, Path]):
        """
        Load the recording.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If required attributes are missing or malformed
        """
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Recording not found: {path}")

        self._entries: List[RecordedEntry] = []
        self._load()

    def _load(self) -> None:
        geometry = read_geo(self.path)
        missing = [name for name in EXPORT_ATTRIBUTES if geometry.get(name) is None]
        if missing:
            raise ValueError(f"{self.path}: missing attributes: {', '.join(missing)}")

        positions = np.asarray(geometry.get(ATTRIB_POSITION).values, dtype=np.float64).reshape(-1, 3)
        names = geometry.get(ATTRIB_NAME).values
        kinds = geometry.get(ATTRIB_KIND).values
        times = np.asarray(geometry.get(ATTRIB_TIME).values, dtype=np.float64).reshape(-1)
        metadata = geometry.get(ATTRIB_METADATA).values

        for row in range(geometry.point_count):
            try:
                document = json.loads(metadata[row])
            except json.JSONDecodeError as e:
                raise ValueError(f"{self.path}: point {row} has invalid metadata: {e}") from e
            self._entries.append(RecordedEntry(
                name=names[row],
                kind=kinds[row],
                time=float(times[row]),
                position=positions[row],
                metadata=document,
            ))

    @property
    def entries(self) -> List[RecordedEntry]:
        return self._entries.copy()

    @property
    def point_count(self) -> int:
        return len(self._entries)

    @property
    def frame_count(self) -> int:
        """Number of frames up to the last one holding an entry."""
        if not self._entries:
            return 0
        return max(e.frame_index for e in self._entries) + 1

    def get_names(self) -> List[str]:
        """Unique entry names in first-seen order."""
        return list(OrderedDict.fromkeys(e.name for e in self._entries))

    def get_kinds(self) -> List[str]:
        return list(OrderedDict.fromkeys(e.kind for e in self._entries))

    def frame(self, time_value: float) -> List[RecordedEntry]:
        """Entries exported with the given (1-based) time."""
        return [e for e in self._entries if e.time == time_value]

    def filter(self, name: Optional[str] = None, kind: Optional[str] = None) -> List[RecordedEntry]:
        return [
            e for e in self._entries
            if (name is None or e.name == name) and (kind is None or e.kind == kind)
        ]

    def decode(self, entry: RecordedEntry) -> Loggable:
        """
        Rebuild the recorded variant.

        Raises:
            ValueError: If the kind is unknown or the metadata malformed
        """
        return decode_metadata(entry.kind, entry.metadata, entry.position)

    def replay(
        self,
        realtime: bool = False,
        fps: float = 24.0
    ) -> Generator[Tuple[float, List[RecordedEntry]], None, None]:
        """
        Step through frames in time order.

        Args:
            realtime: If True, wait 1/fps between frames
            fps: Playback rate for realtime replay

        Yields:
            (time, entries) for every time value present in the recording
        """
        grouped: "OrderedDict[float, List[RecordedEntry]]" = OrderedDict()
        for entry in sorted(self._entries, key=lambda e: e.time):
            grouped.setdefault(entry.time, []).append(entry)

        first = True
        for time_value, entries in grouped.items():
            if realtime and not first:
                time.sleep(1.0 / fps)
            first = False
            yield time_value, entries


def validate_recording(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Validate a recording for integrity and consistency.

    Args:
        path: Recording geometry file

    Returns:
        Validation result dictionary
    """
    result: Dict[str, Any] = {
        "valid": True,
        "errors": [],
        "warnings": [],
        "stats": {},
    }

    try:
        reader = RecordingReader(path)
    except (OSError, ValueError) as e:
        result["valid"] = False
        result["errors"].append(str(e))
        return result

    times = [e.time for e in reader.entries]
    if any(b < a for a, b in zip(times, times[1:])):
        result["warnings"].append("Times are not monotonically increasing")
    if any(t < 1.0 for t in times):
        result["warnings"].append("Found times below 1 (frame times are 1-based)")

    unknown = sorted({e.kind for e in reader.entries if loggable_for_kind(e.kind) is None})
    if unknown:
        result["warnings"].append(f"Unknown kinds: {', '.join(unknown)}")

    for row, entry in enumerate(reader.entries):
        if loggable_for_kind(entry.kind) is None:
            continue
        try:
            reader.decode(entry)
        except ValueError as e:
            result["valid"] = False
            result["errors"].append(f"Point {row} ({entry.name}): {e}")

    result["stats"] = {
        "point_count": reader.point_count,
        "frame_count": reader.frame_count,
        "names": reader.get_names(),
        "kinds": reader.get_kinds(),
    }
    return result
