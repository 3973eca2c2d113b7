import logging
import os
import sys
import threading

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from conftest import CollectingTarget
from houlog.convert import Line
from houlog.errors import (
    AlreadyInitializedError,
    EmptyFrameError,
    HostCommunicationError,
    LockFailureError,
    LoggerDisposedError,
    SerializationError,
)
from houlog.exporter import ATTRIB_POSITION, EXPORT_ATTRIBUTES
from houlog.loggable import Point3, Scalar, Sphere
from houlog.logger import DebugLogger, FrameData, LoggerSlot, LoggerState


def test_new_logger_has_one_empty_dirty_frame(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)

    assert dlog.frame_count == 1
    assert dlog.entry_count == 0
    assert dlog.dirty
    assert slot.get() is dlog


def test_rows_follow_frame_then_insertion_order(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.record("a", 1.0)
    dlog.record("b", (1.0, 2.0, 3.0))
    assert dlog.next_frame() == 1
    dlog.record("c", Line((0, 0, 0), (1, 1, 1)))
    dlog.record("a", 2.0)

    assert dlog.export() is True

    columns = target.last
    assert columns.names == ["a", "b", "c", "a"]
    assert columns.kinds == ["float", "vec3", "line", "float"]
    assert columns.times.tolist() == [1.0, 1.0, 2.0, 2.0]
    np.testing.assert_array_equal(columns.positions[1], [1.0, 2.0, 3.0])
    assert columns.metadata[0] == '{"float":1.0}'


def test_time_after_advancing_n_frames(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    for _ in range(5):
        dlog.next_frame()
    dlog.record("late", 0.0)
    dlog.export()

    assert dlog.frame_count == 6
    assert target.last.times.tolist() == [6.0]


def test_empty_frames_export_no_points(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.next_frame()
    dlog.next_frame()

    assert dlog.export() is True
    assert target.last.point_count == 0
    assert target.last.positions.shape == (0, 3)


def test_second_export_without_changes_is_a_no_op(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.record("x", 1.0)

    assert dlog.export() is True
    assert not dlog.dirty
    assert dlog.export() is False
    assert len(target.commits) == 1
    assert dlog.export_count == 1

    dlog.next_frame()
    assert dlog.dirty
    assert dlog.export() is True
    assert len(target.commits) == 2


def test_export_runs_on_fresh_logger(slot, target) -> None:
    # the initial state is dirty so even an empty recording gets exported
    dlog = DebugLogger(target, slot=slot)
    assert dlog.export() is True
    assert target.last.point_count == 0


def test_second_logger_in_slot_is_rejected(slot, target) -> None:
    first = DebugLogger(target, slot=slot)
    first.record("kept", 1.0)

    with pytest.raises(AlreadyInitializedError):
        DebugLogger(CollectingTarget(), slot=slot)

    assert slot.get() is first
    assert first.entry_count == 1


def test_separate_slots_hold_separate_loggers(target) -> None:
    a = DebugLogger(target, slot=LoggerSlot())
    b = DebugLogger(CollectingTarget(), slot=LoggerSlot())
    a.record("x", 1.0)
    assert b.entry_count == 0


def test_unsupported_value_leaves_buffer_untouched(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.export()

    with pytest.raises(TypeError):
        dlog.record("bad", "text")

    assert dlog.entry_count == 0
    assert not dlog.dirty


def test_concurrent_records_are_all_kept(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    threads_count = 8
    per_thread = 200
    barrier = threading.Barrier(threads_count)

    def worker(idx: int) -> None:
        barrier.wait()
        for i in range(per_thread):
            dlog.record(f"t{idx}", float(i))

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    dlog.export()
    columns = target.last
    assert columns.point_count == threads_count * per_thread
    for idx in range(threads_count):
        values = [
            float(m[len('{"float":'):-1])
            for n, m in zip(columns.names, columns.metadata) if n == f"t{idx}"
        ]
        # each thread's own entries stay in its call order
        assert values == [float(i) for i in range(per_thread)]


def test_concurrent_records_and_frames(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)

    def recorder() -> None:
        for i in range(100):
            dlog.record("r", float(i))

    def advancer() -> None:
        for _ in range(50):
            dlog.next_frame()

    threads = [threading.Thread(target=recorder) for _ in range(4)]
    threads.append(threading.Thread(target=advancer))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert dlog.frame_count == 51
    assert dlog.entry_count == 400
    dlog.export()
    times = target.last.times.tolist()
    assert times == sorted(times)


def test_failed_export_keeps_buffer_dirty(slot) -> None:
    target = CollectingTarget(fail=True)
    dlog = DebugLogger(target, slot=slot)
    dlog.record("x", 1.0)

    with pytest.raises(HostCommunicationError):
        dlog.export()
    assert dlog.dirty
    assert dlog.export_count == 0

    target.fail = False
    assert dlog.export() is True
    assert target.last.names == ["x"]


def test_failed_export_does_not_poison_logger(slot) -> None:
    dlog = DebugLogger(CollectingTarget(fail=True), slot=slot)
    with pytest.raises(HostCommunicationError):
        dlog.export()

    dlog.record("still-works", 1.0)
    assert dlog.entry_count == 1


def test_close_exports_and_closes_target(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.record("x", 1.0)
    dlog.close()

    assert len(target.commits) == 1
    assert target.closed
    assert dlog.closed


def test_close_is_idempotent(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.close()
    dlog.close()

    assert len(target.commits) == 1


def test_close_logs_export_failure(slot, caplog) -> None:
    target = CollectingTarget(fail=True)
    dlog = DebugLogger(target, slot=slot)
    dlog.record("x", 1.0)

    with caplog.at_level(logging.ERROR, logger="houlog"):
        dlog.close()

    assert "Failed to save debug log" in caplog.text
    assert target.closed
    assert dlog.closed


def test_close_skips_export_when_clean(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.export()
    dlog.close()

    assert len(target.commits) == 1


def test_closed_logger_rejects_operations(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.close()

    with pytest.raises(LoggerDisposedError):
        dlog.record("x", 1.0)
    with pytest.raises(LoggerDisposedError):
        dlog.next_frame()
    with pytest.raises(LoggerDisposedError):
        dlog.export()

    # the slot stays claimed after close
    with pytest.raises(AlreadyInitializedError):
        DebugLogger(CollectingTarget(), slot=slot)


def test_context_manager_exports_on_exit(slot, target) -> None:
    with DebugLogger(target, slot=slot) as dlog:
        dlog.record("s", Sphere((1.0, 1.0, 1.0), 0.5))

    assert dlog.closed
    assert target.last.kinds == ["sphere"]
    assert target.last.metadata == ['{"radius":0.5}']


class _ExplodingList(list):
    def append(self, item):
        raise RuntimeError("boom")


def test_failed_mutation_poisons_logger(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog._state.frames[-1] = FrameData(entries=_ExplodingList())

    with pytest.raises(RuntimeError, match="boom"):
        dlog.record("x", 1.0)

    with pytest.raises(LockFailureError):
        dlog.record("y", 2.0)
    with pytest.raises(LockFailureError):
        dlog.export()


def test_missing_frame_raises_empty_frame_error(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog._state.frames.clear()

    with pytest.raises(EmptyFrameError):
        dlog.record("x", 1.0)

    # not a poisoning failure
    dlog._state.frames.append(FrameData())
    dlog.record("x", 1.0)
    assert dlog.entry_count == 1


def test_snapshot_is_a_copy(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.record("p", Point3((0.0, 1.0, 0.0)))

    frames = dlog.snapshot()
    frames[0].entries.append(frames[0].entries[0])

    assert dlog.entry_count == 1
    assert frames[0].entries[0].name == "p"


def test_export_columns_declare_all_attributes(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.record("v", Scalar(1.0))
    dlog.export()

    columns = target.last
    assert columns.positions.dtype == np.float32
    assert columns.times.dtype == np.float32
    assert EXPORT_ATTRIBUTES[0] == ATTRIB_POSITION
    assert len(columns.names) == len(columns.kinds) == len(columns.metadata) == len(columns.times)


def test_logger_state_defaults() -> None:
    state = LoggerState()
    assert len(state.frames) == 1
    assert state.frames[0].entries == []
    assert state.dirty


def test_unencodable_value_is_rejected_at_record(slot, target) -> None:
    dlog = DebugLogger(target, slot=slot)
    dlog.record("good", Point3((1.0, 2.0, 3.0)))

    with pytest.raises(SerializationError):
        dlog.record("bad", float("nan"))
    with pytest.raises(SerializationError):
        dlog.record("bad", (float("inf"), 0.0, 0.0))

    assert dlog.entry_count == 1
    assert dlog.export() is True
    assert target.last.names == ["good"]

    dlog.record("later", 2.0)
    dlog.close()
    assert target.last.names == ["good", "later"]
