"""
Conversion of producer values into loggable variants.

Call sites may pass convenience types (a start/end Line, plain tuples,
numpy arrays, scipy rotations, numbers). They are normalized here into one
of the registered variants before they reach the frame buffer, so the
exported kinds stay within what the downstream parser understands.

New producer types are added with ``register_conversion``:

    @register_conversion(MyBone)
    def _(bone):
        return Capsule(bone.head, bone.tail, bone.radius)
"""

import numbers
from dataclasses import dataclass
from functools import singledispatch
from typing import Any, Callable

import numpy as np
from scipy.spatial.transform import Rotation as SciRotation

from .loggable import Loggable, Point3, Polyline, Rotation, Scalar, Transform


@dataclass(frozen=True)
class Line:
    """Straight segment; recorded as a two-point Polyline."""
    start: Any
    end: Any


@singledispatch
def to_loggable(value: Any) -> Loggable:
    """
    Convert a producer value into a loggable variant.

    Raises:
        TypeError: If no conversion is registered for the value's type
    """
    raise TypeError(f"cannot record values of type {type(value).__name__}")


def register_conversion(cls: type) -> Callable:
    """Register a converter for ``cls``. The converter must return a Loggable."""
    return to_loggable.register(cls)


@to_loggable.register(Loggable)
def _identity(value: Loggable) -> Loggable:
    return value


@to_loggable.register(Line)
def _line(value: Line) -> Loggable:
    return Polyline([value.start, value.end])


@to_loggable.register(bool)
def _bool(value: bool) -> Loggable:
    raise TypeError("cannot record bool values; convert to a number explicitly")


@to_loggable.register(numbers.Real)
def _real(value: numbers.Real) -> Loggable:
    return Scalar(float(value))


@to_loggable.register(np.generic)
def _numpy_scalar(value: np.generic) -> Loggable:
    if isinstance(value, np.bool_) or not np.isrealobj(value):
        raise TypeError(f"cannot record numpy {value.dtype} values")
    return Scalar(float(value))


@to_loggable.register(SciRotation)
def _scipy_rotation(value: SciRotation) -> Loggable:
    if not value.single:
        raise TypeError("cannot record a stack of rotations as one entry")
    return Rotation.from_scipy(value)


@to_loggable.register(np.ndarray)
@to_loggable.register(list)
@to_loggable.register(tuple)
def _array(value: Any) -> Loggable:
    try:
        arr = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise TypeError(f"cannot record non-numeric sequence: {e}") from e

    if arr.shape == (3,):
        return Point3(arr)
    if arr.shape == (4,):
        return Rotation(arr)
    if arr.shape == (4, 4):
        return Transform(arr)
    if arr.ndim == 2 and arr.shape[1] == 3 and arr.shape[0] >= 1:
        return Polyline(arr)
    raise TypeError(f"cannot record array of shape {arr.shape}")
