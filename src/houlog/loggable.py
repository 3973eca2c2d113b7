"""
Loggable variant set for the debug recorder.

Provides:
- Loggable base class (kind tag, representative position, metadata document)
- Built-in variants: points, transforms, rotations, scalars, polylines,
  polygons, meshes, armatures, capsules and spheres
- A kind registry used to decode metadata documents back into variants

Kind tags and metadata layouts are read by the downstream geometry parser
and must be kept in sync with it.
"""

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

import numpy as np
from scipy.spatial.transform import Rotation as SciRotation

from .errors import SerializationError


_REGISTRY: Dict[str, Type["Loggable"]] = {}


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


def _vec3(value: Any, what: str = "point") -> np.ndarray:
    arr = np.array(value, dtype=np.float64)
    if arr.shape != (3,):
        raise ValueError(f"{what} must have 3 components, got shape {arr.shape}")
    return _readonly(arr)


def _points(values: Any, what: str = "points") -> np.ndarray:
    arr = np.array(values, dtype=np.float64)
    if arr.size == 0:
        raise ValueError(f"{what} must contain at least one point")
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{what} must be an (N, 3) array, got shape {arr.shape}")
    return _readonly(arr)


def _radius(value: Any) -> float:
    r = float(value)
    if not math.isfinite(r) or r < 0.0:
        raise ValueError(f"radius must be finite and non-negative, got {value!r}")
    return r


def _rotation_matrix(rotation: Any) -> np.ndarray:
    """Return a 3x3 rotation matrix from a scipy Rotation, quaternion or matrix."""
    if isinstance(rotation, SciRotation):
        return rotation.as_matrix()
    if isinstance(rotation, Rotation):
        return rotation.as_scipy().as_matrix()
    arr = np.asarray(rotation, dtype=np.float64)
    if arr.shape == (4,):
        return SciRotation.from_quat(arr).as_matrix()
    if arr.shape == (3, 3):
        return arr
    raise ValueError(f"cannot interpret rotation of shape {arr.shape}")


def register_loggable(cls: Type["Loggable"]) -> Type["Loggable"]:
    """
    Class decorator adding a variant to the kind registry.

    Raises:
        ValueError: If the class has no KIND or the kind is already taken
    """
    kind = getattr(cls, "KIND", "")
    if not kind:
        raise ValueError(f"{cls.__name__} does not define a KIND")
    existing = _REGISTRY.get(kind)
    if existing is not None and existing is not cls:
        raise ValueError(f"kind {kind!r} is already registered by {existing.__name__}")
    _REGISTRY[kind] = cls
    return cls


def loggable_for_kind(kind: str) -> Optional[Type["Loggable"]]:
    return _REGISTRY.get(kind)


def registered_kinds() -> List[str]:
    return sorted(_REGISTRY)


def decode_metadata(
    kind: str,
    document: Dict[str, Any],
    position: Optional[Sequence[float]] = None
) -> "Loggable":
    """
    Rebuild a variant from its kind tag and metadata document.

    Args:
        kind: Kind tag as written to the ``kind`` attribute
        document: Parsed metadata document
        position: Exported position, needed by variants that keep their
            location only in ``P`` (spheres)

    Returns:
        The decoded variant

    Raises:
        ValueError: If the kind is unknown or the document is malformed
    """
    cls = _REGISTRY.get(kind)
    if cls is None:
        raise ValueError(f"unknown loggable kind: {kind!r}")
    try:
        return cls.from_metadata(document, position)
    except (KeyError, TypeError) as e:
        raise ValueError(f"malformed {kind} metadata: {e}") from e


class Loggable(ABC):
    """
    A value that can be recorded and exported as one point.

    Subclasses set ``KIND`` and implement ``to_metadata`` and
    ``from_metadata``. ``position`` defaults to the origin.
    """

    KIND: str = ""

    def kind(self) -> str:
        return type(self).KIND

    def position(self) -> np.ndarray:
        return np.zeros(3, dtype=np.float64)

    @abstractmethod
    def to_metadata(self) -> Dict[str, Any]:
        """Full payload as a JSON-shaped document."""

    def as_json(self) -> str:
        """
        Encode the metadata document as compact JSON.

        Raises:
            SerializationError: If the document holds non-finite numbers or
                values JSON cannot represent
        """
        try:
            return json.dumps(self.to_metadata(), separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"cannot encode {self.kind()} metadata: {e}") from e

    @classmethod
    @abstractmethod
    def from_metadata(
        cls,
        document: Dict[str, Any],
        position: Optional[Sequence[float]] = None
    ) -> "Loggable":
        """Inverse of ``to_metadata``."""


@register_loggable
@dataclass(frozen=True, eq=False)
class Point3(Loggable):
    """A point in space."""
    xyz: np.ndarray

    KIND = "vec3"

    def __post_init__(self):
        object.__setattr__(self, "xyz", _vec3(self.xyz))

    def position(self) -> np.ndarray:
        return self.xyz

    def to_metadata(self) -> Dict[str, Any]:
        return {"pt": self.xyz.tolist()}

    @classmethod
    def from_metadata(cls, document, position=None) -> "Point3":
        return cls(document["pt"])


@register_loggable
@dataclass(frozen=True, eq=False)
class Transform(Loggable):
    """
    A 4x4 transform.

    Rows hold the x, y and z basis vectors followed by the translation row,
    each with four components. ``xform`` in the metadata document is this
    matrix flattened row by row.
    """
    matrix: np.ndarray

    KIND = "mat4"

    def __post_init__(self):
        m = np.array(self.matrix, dtype=np.float64)
        if m.size == 16:
            m = m.reshape(4, 4)
        if m.shape != (4, 4):
            raise ValueError(f"transform must be 4x4, got shape {m.shape}")
        object.__setattr__(self, "matrix", _readonly(m))

    @classmethod
    def identity(cls) -> "Transform":
        return cls(np.eye(4))

    @classmethod
    def from_translation(cls, translation: Sequence[float]) -> "Transform":
        m = np.eye(4)
        m[3, :3] = _vec3(translation, "translation")
        return cls(m)

    @classmethod
    def from_rotation_translation(
        cls,
        rotation: Any,
        translation: Sequence[float] = (0.0, 0.0, 0.0)
    ) -> "Transform":
        """
        Build a transform from a rotation and a translation.

        Args:
            rotation: scipy Rotation, Rotation, quaternion [x, y, z, w] or
                3x3 matrix acting on column vectors
            translation: Translation vector
        """
        m = np.eye(4)
        # basis vectors are the columns of the rotation matrix
        m[:3, :3] = _rotation_matrix(rotation).T
        m[3, :3] = _vec3(translation, "translation")
        return cls(m)

    @classmethod
    def from_affine(cls, affine: Any) -> "Transform":
        """Build from a column-vector matrix (translation in the last column)."""
        m = np.asarray(affine, dtype=np.float64)
        if m.shape != (4, 4):
            raise ValueError(f"affine matrix must be 4x4, got shape {m.shape}")
        return cls(m.T)

    @property
    def translation(self) -> np.ndarray:
        return self.matrix[3, :3]

    def position(self) -> np.ndarray:
        return self.translation.copy()

    def to_metadata(self) -> Dict[str, Any]:
        return {"xform": self.matrix.reshape(16).tolist()}

    @classmethod
    def from_metadata(cls, document, position=None) -> "Transform":
        return cls(document["xform"])


@register_loggable
@dataclass(frozen=True, eq=False)
class Rotation(Loggable):
    """An orientation as a quaternion [x, y, z, w]."""
    quat: np.ndarray

    KIND = "quat"

    def __post_init__(self):
        q = np.array(self.quat, dtype=np.float64)
        if q.shape != (4,):
            raise ValueError(f"quaternion must have 4 components, got shape {q.shape}")
        object.__setattr__(self, "quat", _readonly(q))

    @classmethod
    def from_scipy(cls, rotation: SciRotation) -> "Rotation":
        return cls(rotation.as_quat())

    def as_scipy(self) -> SciRotation:
        return SciRotation.from_quat(self.quat)

    def to_metadata(self) -> Dict[str, Any]:
        return {"quat": self.quat.tolist()}

    @classmethod
    def from_metadata(cls, document, position=None) -> "Rotation":
        return cls(document["quat"])


@register_loggable
@dataclass(frozen=True, eq=False)
class Scalar(Loggable):
    """A single number."""
    value: float

    KIND = "float"

    def __post_init__(self):
        object.__setattr__(self, "value", float(self.value))

    def to_metadata(self) -> Dict[str, Any]:
        return {"float": self.value}

    @classmethod
    def from_metadata(cls, document, position=None) -> "Scalar":
        return cls(document["float"])


@dataclass(frozen=True, eq=False)
class _PointSequence(Loggable):
    points: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, "points", _points(self.points))

    def __len__(self) -> int:
        return len(self.points)

    def position(self) -> np.ndarray:
        return self.points[0].copy()

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "x": self.points[:, 0].tolist(),
            "y": self.points[:, 1].tolist(),
            "z": self.points[:, 2].tolist(),
        }

    @classmethod
    def from_metadata(cls, document, position=None):
        return cls(np.column_stack([document["x"], document["y"], document["z"]]))


@register_loggable
@dataclass(frozen=True, eq=False)
class Polyline(_PointSequence):
    """An open chain of one or more points."""

    KIND = "line"


@register_loggable
@dataclass(frozen=True, eq=False)
class Polygon(_PointSequence):
    """A closed loop of one or more points."""

    KIND = "polygon"


@register_loggable
@dataclass(frozen=True, eq=False)
class Mesh(Loggable):
    """
    Polygon mesh with a flat index list.

    ``index_counts`` holds the vertex count of each face so that consumers
    can split ``indices`` back into faces.
    """
    vertices: np.ndarray
    indices: np.ndarray
    index_counts: np.ndarray

    KIND = "mesh"

    def __post_init__(self):
        vertices = _points(self.vertices, "vertices")
        indices = np.array(self.indices, dtype=np.int64).reshape(-1)
        counts = np.array(self.index_counts, dtype=np.int64).reshape(-1)

        if (counts < 0).any():
            raise ValueError("index_counts must be non-negative")
        if int(counts.sum()) != len(indices):
            raise ValueError(
                f"index_counts sum to {int(counts.sum())} but there are {len(indices)} indices"
            )
        if len(indices) and (indices.min() < 0 or indices.max() >= len(vertices)):
            raise ValueError(f"indices must be in [0, {len(vertices)})")

        object.__setattr__(self, "vertices", vertices)
        object.__setattr__(self, "indices", _readonly(indices))
        object.__setattr__(self, "index_counts", _readonly(counts))

    @classmethod
    def from_faces(cls, vertices: Any, faces: Sequence[Sequence[int]]) -> "Mesh":
        indices = [i for face in faces for i in face]
        return cls(vertices, indices, [len(face) for face in faces])

    @property
    def face_count(self) -> int:
        return len(self.index_counts)

    def faces(self) -> List[List[int]]:
        splits = np.cumsum(self.index_counts)[:-1]
        return [part.tolist() for part in np.split(self.indices, splits)] if self.face_count else []

    def position(self) -> np.ndarray:
        return self.vertices[0].copy()

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "x": self.vertices[:, 0].tolist(),
            "y": self.vertices[:, 1].tolist(),
            "z": self.vertices[:, 2].tolist(),
            "i": self.indices.tolist(),
            "c": self.index_counts.tolist(),
        }

    @classmethod
    def from_metadata(cls, document, position=None) -> "Mesh":
        vertices = np.column_stack([document["x"], document["y"], document["z"]])
        return cls(vertices, document["i"], document["c"])


@register_loggable
@dataclass(frozen=True, eq=False)
class Armature(Loggable):
    """
    Joint hierarchy.

    ``parents[i]`` is the index of joint i's parent, or -1 for a root.
    Parents do not have to precede their children.
    """
    names: Tuple[str, ...]
    parents: np.ndarray
    xforms: np.ndarray

    KIND = "armature"

    def __post_init__(self):
        names = tuple(str(n) for n in self.names)
        parents = np.array(self.parents, dtype=np.int64).reshape(-1)
        xforms = np.array(
            [x.matrix if isinstance(x, Transform) else Transform(x).matrix for x in self.xforms],
            dtype=np.float64,
        )

        if not names:
            raise ValueError("armature must have at least one joint")
        if not (len(names) == len(parents) == len(xforms)):
            raise ValueError(
                f"names, parents and xforms differ in length: "
                f"{len(names)}, {len(parents)}, {len(xforms)}"
            )
        bad = [int(p) for p in parents if p != -1 and not 0 <= p < len(names)]
        if bad:
            raise ValueError(f"invalid parent indices: {bad}")

        object.__setattr__(self, "names", names)
        object.__setattr__(self, "parents", _readonly(parents))
        object.__setattr__(self, "xforms", _readonly(xforms.reshape(-1, 4, 4)))

    def __len__(self) -> int:
        return len(self.names)

    def roots(self) -> List[int]:
        return [i for i, p in enumerate(self.parents) if p == -1]

    def position(self) -> np.ndarray:
        return self.xforms[0, 3, :3].copy()

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "names": list(self.names),
            "xforms": self.xforms.reshape(-1).tolist(),
            "parents": self.parents.tolist(),
        }

    @classmethod
    def from_metadata(cls, document, position=None) -> "Armature":
        xforms = np.asarray(document["xforms"], dtype=np.float64).reshape(-1, 4, 4)
        return cls(document["names"], document["parents"], list(xforms))


@register_loggable
@dataclass(frozen=True, eq=False)
class Capsule(Loggable):
    """Segment from point_a to point_b swept by a sphere of the given radius."""
    point_a: np.ndarray
    point_b: np.ndarray
    radius: float

    KIND = "capsule"

    def __post_init__(self):
        object.__setattr__(self, "point_a", _vec3(self.point_a, "point_a"))
        object.__setattr__(self, "point_b", _vec3(self.point_b, "point_b"))
        object.__setattr__(self, "radius", _radius(self.radius))

    def position(self) -> np.ndarray:
        return (self.point_a + self.point_b) / 2.0

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "a": self.point_a.tolist(),
            "b": self.point_b.tolist(),
            "r": self.radius,
        }

    @classmethod
    def from_metadata(cls, document, position=None) -> "Capsule":
        return cls(document["a"], document["b"], document["r"])


@register_loggable
@dataclass(frozen=True, eq=False)
class Sphere(Loggable):
    """
    Sphere around a center point.

    The center is exported only through the point position; the metadata
    document carries the radius alone.
    """
    center: np.ndarray
    radius: float

    KIND = "sphere"

    def __post_init__(self):
        center = _vec3(self.center, "center")
        # the center is only exported through P, which must stay finite
        if not np.isfinite(center).all():
            raise ValueError(f"center must be finite, got {center.tolist()}")
        object.__setattr__(self, "center", center)
        object.__setattr__(self, "radius", _radius(self.radius))

    def position(self) -> np.ndarray:
        return self.center

    def to_metadata(self) -> Dict[str, Any]:
        return {"radius": self.radius}

    @classmethod
    def from_metadata(cls, document, position=None) -> "Sphere":
        center = position if position is not None else (0.0, 0.0, 0.0)
        return cls(center, document["radius"])
