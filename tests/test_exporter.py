import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from houlog.errors import HostCommunicationError, SerializationError
from houlog.exporter import EXPORT_ATTRIBUTES, ExportColumns, build_columns, write_columns
from houlog.host import LocalSession
from houlog.loggable import Capsule, Point3, Polyline, Scalar
from houlog.logger import FrameData, LogEntry


def _frames():
    return [
        FrameData([
            LogEntry("p", Point3((1.0, 2.0, 3.0))),
            LogEntry("cap", Capsule((0, 0, 0), (0, 0, 2), 0.1)),
        ]),
        FrameData([]),
        FrameData([LogEntry("line", Polyline([(4, 5, 6), (7, 8, 9)]))]),
    ]


def test_build_columns_single_walk() -> None:
    columns = build_columns(_frames())

    assert columns.point_count == 3
    assert len(columns) == 3
    assert columns.names == ["p", "cap", "line"]
    assert columns.kinds == ["vec3", "capsule", "line"]
    assert columns.times.tolist() == [1.0, 1.0, 3.0]
    np.testing.assert_array_equal(
        columns.positions,
        np.array([[1, 2, 3], [0, 0, 1], [4, 5, 6]], dtype=np.float32),
    )
    assert columns.metadata[2] == '{"x":[4.0,7.0],"y":[5.0,8.0],"z":[6.0,9.0]}'


def test_build_columns_empty() -> None:
    columns = build_columns([FrameData()])

    assert columns.point_count == 0
    assert columns.positions.shape == (0, 3)
    assert columns.times.shape == (0,)


def test_build_columns_propagates_serialization_error() -> None:
    with pytest.raises(SerializationError):
        build_columns([FrameData([LogEntry("nan", Scalar(float("inf")))])])


def _sop_geometry(session: LocalSession):
    container = session.create_node("Object/geo")
    node = session.create_node("null", parent=container)
    node.cook()
    return node.geometry()


def test_write_columns_declares_every_attribute() -> None:
    geometry = _sop_geometry(LocalSession())
    write_columns(geometry, build_columns(_frames()))
    geometry.commit()

    data = geometry.data
    assert data.point_count == 3
    assert list(data.attributes) == list(EXPORT_ATTRIBUTES)
    assert data.get("P").tuple_size == 3
    assert data.get("time").tuple_size == 1
    assert data.get("kind").values == ["vec3", "capsule", "line"]


def test_write_columns_with_no_points() -> None:
    geometry = _sop_geometry(LocalSession())
    write_columns(geometry, ExportColumns())
    geometry.commit()

    assert geometry.data.point_count == 0
    assert list(geometry.data.attributes) == list(EXPORT_ATTRIBUTES)


def test_mismatched_column_is_rejected_by_host() -> None:
    geometry = _sop_geometry(LocalSession())
    columns = build_columns(_frames())
    columns.names.append("extra")

    with pytest.raises(HostCommunicationError):
        write_columns(geometry, columns)
