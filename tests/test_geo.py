import gzip
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from houlog.geo import (
    GEO_FILE_VERSION,
    STORAGE_FLOAT,
    STORAGE_STRING,
    PointGeometry,
    geometry_from_json,
    geometry_to_json,
    read_geo,
    write_geo,
)


@pytest.fixture()
def geometry() -> PointGeometry:
    geo = PointGeometry()
    geo.set_point_count(3)
    geo.add_attribute("P", STORAGE_FLOAT, 3, [0, 0, 0, 1, 0, 0, 2, 0, 0])
    geo.add_attribute("name", STORAGE_STRING, 1, ["a", "b", "a"])
    geo.add_attribute("time", STORAGE_FLOAT, 1, [1, 1, 2])
    geo.commit()
    return geo


def test_writes_are_pending_until_commit() -> None:
    geo = PointGeometry()
    geo.set_point_count(1)
    geo.add_attribute("time", STORAGE_FLOAT, 1, [1.0])

    assert not geo.committed
    assert geo.point_count == 0
    assert geo.get("time") is None

    geo.commit()
    assert geo.point_count == 1
    assert geo.get("time").tuples() == [1.0]


def test_attribute_length_must_match_point_count() -> None:
    geo = PointGeometry()
    geo.set_point_count(2)

    with pytest.raises(ValueError, match="expected 6"):
        geo.add_attribute("P", STORAGE_FLOAT, 3, [0.0, 0.0, 0.0])
    with pytest.raises(ValueError):
        geo.add_attribute("name", STORAGE_STRING, 1, ["only-one"])
    with pytest.raises(ValueError):
        geo.set_point_count(-1)


def test_json_layout(geometry) -> None:
    document = geometry_to_json(geometry)
    top = dict(zip(document[0::2], document[1::2]))

    assert top["fileversion"] == GEO_FILE_VERSION
    assert top["pointcount"] == 3
    assert top["primitivecount"] == 0

    attributes = top["attributes"][1]
    names = [dict(zip(h[0::2], h[1::2]))["name"] for h, _ in attributes]
    assert names == ["P", "name", "time"]

    _, name_body = attributes[1]
    body = dict(zip(name_body[0::2], name_body[1::2]))
    # repeated strings are stored once
    assert body["strings"] == ["a", "b"]
    assert body["indices"][-1] == [[0, 1, 0]]


def test_json_document_parses_back(geometry) -> None:
    parsed = geometry_from_json(json.loads(json.dumps(geometry_to_json(geometry))))

    assert parsed.point_count == 3
    assert parsed.get("P").tuples() == [[0, 0, 0], [1, 0, 0], [2, 0, 0]]
    assert parsed.get("name").values == ["a", "b", "a"]
    assert parsed.get("time").tuples() == [1.0, 1.0, 2.0]


def test_empty_geometry_parses_back() -> None:
    geo = PointGeometry()
    geo.set_point_count(0)
    geo.add_attribute("P", STORAGE_FLOAT, 3, [])
    geo.add_attribute("name", STORAGE_STRING, 1, [])
    geo.commit()

    parsed = geometry_from_json(geometry_to_json(geo))
    assert parsed.point_count == 0
    assert list(parsed.attributes) == ["P", "name"]


def test_geometry_from_json_rejects_other_documents() -> None:
    with pytest.raises(ValueError):
        geometry_from_json({"pointcount": 1})
    with pytest.raises(ValueError):
        geometry_from_json(["fileversion", GEO_FILE_VERSION])


def test_write_and_read_plain_and_gzip(geometry, tmp_path) -> None:
    plain = write_geo(geometry, tmp_path / "out" / "points.geo")
    packed = write_geo(geometry, tmp_path / "points.geo.gz")

    assert plain.exists()
    with gzip.open(packed, "rt", encoding="utf-8") as f:
        assert json.load(f)[0] == "fileversion"

    assert read_geo(plain).get("name").values == ["a", "b", "a"]
    assert read_geo(packed).point_count == 3


def test_write_rejects_non_finite_values(tmp_path) -> None:
    geo = PointGeometry()
    geo.set_point_count(1)
    geo.add_attribute("time", STORAGE_FLOAT, 1, [float("inf")])
    geo.commit()

    with pytest.raises(ValueError):
        write_geo(geo, tmp_path / "inf.geo")
    assert not (tmp_path / "inf.geo").exists()
