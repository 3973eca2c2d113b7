import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import houlog
from conftest import CollectingTarget
from houlog import api
from houlog.bridge import BridgeServer, BridgeServerConfig
from houlog.config import LoggerConfig
from houlog.errors import AlreadyInitializedError, NotInitializedError
from houlog.geo import read_geo
from houlog.host import LocalSession
from houlog.replay import RecordingReader


def test_record_without_logger_warns_and_drops(process_slot, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="houlog"):
        api.houlog("orphan", 1.0)

    assert "not initialized" in caplog.text
    assert api.get_logger() is None


def test_frame_and_export_need_a_logger(process_slot) -> None:
    with pytest.raises(NotInitializedError):
        api.next_frame()
    with pytest.raises(NotInitializedError):
        api.export_now()


def test_file_logger_end_to_end(process_slot, tmp_path) -> None:
    path = tmp_path / "debug.geo"
    dlog = api.init_file_logger(path)

    assert api.get_logger() is dlog
    api.houlog("origin", (0.0, 0.0, 0.0))
    assert api.next_frame() == 1
    api.houlog("value", 2.0)

    assert api.export_now() is True
    assert api.export_now() is False

    reader = RecordingReader(path)
    assert reader.get_names() == ["origin", "value"]
    assert [e.time for e in reader.entries] == [1.0, 2.0]


def test_second_init_is_rejected(process_slot, tmp_path) -> None:
    first = api.init_file_logger(tmp_path / "a.geo")

    with pytest.raises(AlreadyInitializedError):
        api.init_file_logger(tmp_path / "b.geo")
    with pytest.raises(AlreadyInitializedError):
        api.init_live_logger(session=LocalSession(containers=["/obj/recordings"]))

    assert api.get_logger() is first


def test_shutdown_exports_and_disposes(process_slot, tmp_path, caplog) -> None:
    path = tmp_path / "final.geo"
    api.init_file_logger(path)
    api.houlog("last", 1.0)

    api.shutdown()

    assert read_geo(path).get("name").values == ["last"]
    assert api.get_logger().closed

    with caplog.at_level(logging.WARNING, logger="houlog"):
        api.houlog("late", 2.0)
    assert "dropped entry 'late'" in caplog.text

    # shutting down twice is harmless
    api.shutdown()


def test_live_logger_with_session(process_slot) -> None:
    session = LocalSession(containers=["/obj/debug"])
    config = LoggerConfig(container_path="/obj/debug", node_name="frames")

    api.init_live_logger(session=session, config=config)
    api.houlog("p", (1.0, 2.0, 3.0))
    api.export_now()

    node = session.get_node("/obj/debug/frames")
    assert node.geometry().data.get("kind").values == ["vec3"]


def test_live_logger_connects_with_config(process_slot) -> None:
    server = BridgeServer(BridgeServerConfig(port=0))
    host, port = server.start()
    try:
        api.init_live_logger(config=LoggerConfig(host=host, port=port))
        api.houlog("x", 1.0)
        api.export_now()
        api.shutdown()

        node = server.session.get_node("/obj/recordings/recording")
        assert node.geometry().data.point_count == 1
        assert server.commit_count == 1
    finally:
        server.shutdown()


def test_custom_target_through_logger_class(slot) -> None:
    target = CollectingTarget()
    with houlog.DebugLogger(target, slot=slot) as dlog:
        dlog.record("a", 1.0)
    assert target.last.names == ["a"]


def test_package_exports() -> None:
    for name in houlog.__all__:
        assert hasattr(houlog, name), name
