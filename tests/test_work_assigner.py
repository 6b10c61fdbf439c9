"""Tests for queueing replication work and reconciling finished work."""

from unittest.mock import MagicMock, patch

import pytest

from common.status import Status, file_closed, fully_replicated
from common.types import Entry, Key
from coordinator.exceptions import QueuedWorkStateError, TableServiceError, WorkQueueError
from coordinator.work_assigner import WorkAssigner
from coordinator.work_queue import SqliteWorkQueue


class FakeScanner:
    """Scanner over fixed entries recording how far it was read."""

    def __init__(self, entries, fail_after=None):
        self.entries = entries
        self.fail_after = fail_after
        self.consumed = 0
        self.closed = False

    def set_ranges(self, ranges):
        self.ranges = list(ranges)

    def fetch_column_family(self, column_family):
        pass

    def __iter__(self):
        for entry in self.entries:
            if self.fail_after is not None and self.consumed >= self.fail_after:
                raise TableServiceError("scan session expired")
            self.consumed += 1
            yield entry

    def close(self):
        self.closed = True


class FlakyWorkQueue(SqliteWorkQueue):
    """Work queue failing writes for selected keys."""

    def __init__(self, db_path, root, failing_keys):
        super().__init__(db_path, root)
        self.failing_keys = set(failing_keys)

    def add_work(self, work_key, data):
        if work_key in self.failing_keys:
            raise WorkQueueError(f"connection loss while adding {work_key}")
        super().add_work(work_key, data)


def _work_entry(file, target, status):
    return Entry(key=Key(row=file, column_family="work", column_qualifier=target), value=status.to_bytes())


@pytest.fixture
def assigner(context):
    assigner = WorkAssigner(context)
    assigner.max_queue_size = context.config.get_max_work_queue()
    assigner.initialize()
    return assigner


class TestInitialization:
    """Test recovery of queued work."""

    def test_recovers_queued_work_before_scanning(self, context, work_queue):
        work_queue.add_work("a.rf|1", "/data/a.rf")
        work_queue.add_work("b.rf|2", "/data/b.rf")
        assigner = WorkAssigner(context)

        with patch("coordinator.work_assigner.ReplicationTable.try_batch_scanner") as scanner:
            assigner.initialize()
            scanner.assert_not_called()

        assert assigner.queued_work == {"a.rf|1", "b.rf|2"}

    def test_double_initialization_is_fatal(self, assigner):
        with pytest.raises(QueuedWorkStateError):
            assigner.initialize_queued_work()

    def test_initialize_is_idempotent(self, assigner, work_queue):
        queue_handle = assigner.work_queue
        queued = assigner.queued_work

        assigner.initialize()

        assert assigner.work_queue is queue_handle
        assert assigner.queued_work is queued

    def test_failed_recovery_is_retried(self, context):
        failing_queue = MagicMock()
        failing_queue.get_work_queued.side_effect = [WorkQueueError("no session"), ["a.rf|1"]]
        context.work_queue_factory = lambda: failing_queue
        assigner = WorkAssigner(context)

        with pytest.raises(WorkQueueError):
            assigner.initialize()
        assert assigner.queued_work is None

        assigner.initialize()
        assert assigner.queued_work == {"a.rf|1"}


class TestCreateWork:
    """Test the scan-and-queue pass."""

    def test_queues_only_files_needing_work(self, assigner, work_queue, write_work_entries):
        write_work_entries([
            ("path/to/f1", "T1", file_closed(100).to_bytes()),
            ("path/to/f2", "T1", fully_replicated(file_closed(100)).to_bytes()),
        ])

        queued = assigner.create_work()

        assert queued == 1
        assert work_queue.get_work_queued() == ["f1|T1"]
        assert work_queue.get_work("f1|T1") == "path/to/f1"
        assert assigner.queued_work == {"f1|T1"}

    def test_no_duplicate_dispatch(self, assigner, work_queue, write_work_entries):
        write_work_entries([
            ("/data/f1.rf", "1", file_closed(100).to_bytes()),
            ("/data/f1.rf", "2", file_closed(100).to_bytes()),
            ("/data/f2.rf", "1", file_closed(100).to_bytes()),
        ])

        assert assigner.create_work() == 3
        assert assigner.create_work() == 0

        assert sorted(work_queue.get_work_queued()) == ["f1.rf|1", "f1.rf|2", "f2.rf|1"]
        assert assigner.queued_work == {"f1.rf|1", "f1.rf|2", "f2.rf|1"}

    def test_recovered_work_not_dispatched_again(self, context, work_queue, write_work_entries):
        work_queue.add_work("f1.rf|1", "/data/f1.rf")
        write_work_entries([("/data/f1.rf", "1", file_closed(100).to_bytes())])
        queue_spy = MagicMock(wraps=work_queue)
        context.work_queue_factory = lambda: queue_spy
        assigner = WorkAssigner(context)
        assigner.max_queue_size = 10
        assigner.initialize()

        assert assigner.create_work() == 0
        queue_spy.add_work.assert_not_called()

    def test_backpressure_stops_pass_without_scanning(self, assigner):
        assigner.max_queue_size = 2
        assigner.queued_work = {"a|1", "b|1", "c|1"}
        assigner.work_queue = MagicMock()
        scanner = FakeScanner([
            _work_entry("/data/f1.rf", "1", file_closed(10)),
            _work_entry("/data/f2.rf", "1", file_closed(10)),
        ])

        with patch("coordinator.work_assigner.ReplicationTable.try_batch_scanner", return_value=scanner):
            queued = assigner.create_work()

        assert queued == 0
        assert scanner.consumed == 1
        assert scanner.closed
        assigner.work_queue.add_work.assert_not_called()
        assert assigner.queued_work == {"a|1", "b|1", "c|1"}

    def test_ceiling_reached_mid_pass(self, assigner, work_queue, write_work_entries):
        assigner.max_queue_size = 1
        write_work_entries([
            (f"/data/f{i}.rf", "1", file_closed(10).to_bytes()) for i in range(4)
        ])

        queued = assigner.create_work()

        # the check runs before each entry and only trips once the set exceeds the ceiling
        assert queued == 2
        assert len(work_queue.get_work_queued()) == 2

    def test_failed_dispatch_not_marked_queued(self, context, tmp_path, write_work_entries):
        flaky = FlakyWorkQueue(str(tmp_path / "flaky.db"), "/q", failing_keys={"f1.rf|1"})
        context.work_queue_factory = lambda: flaky
        assigner = WorkAssigner(context)
        assigner.max_queue_size = 10
        assigner.initialize()
        write_work_entries([
            ("/data/f1.rf", "1", file_closed(10).to_bytes()),
            ("/data/f2.rf", "1", file_closed(10).to_bytes()),
        ])

        assert assigner.create_work() == 1
        assert "f1.rf|1" not in assigner.queued_work
        assert assigner.queued_work == {"f2.rf|1"}

        flaky.failing_keys.clear()

        assert assigner.create_work() == 1
        assert flaky.get_work("f1.rf|1") == "/data/f1.rf"
        assert assigner.queued_work == {"f1.rf|1", "f2.rf|1"}

    def test_corrupt_entry_skipped(self, assigner, work_queue, write_work_entries):
        write_work_entries([
            ("/data/bad.rf", "1", b"\xff"),
            ("/data/good.rf", "1", file_closed(10).to_bytes()),
        ])

        assert assigner.create_work() == 1
        assert work_queue.get_work_queued() == ["good.rf|1"]

    def test_corrupt_entries_do_not_trip_backpressure(self, assigner):
        assigner.max_queue_size = 0
        scanner = FakeScanner([
            Entry(key=Key(row="/data/bad1.rf", column_family="work", column_qualifier="1"), value=b""),
            Entry(key=Key(row="/data/bad2.rf", column_family="work", column_qualifier="1"), value=b"x"),
            _work_entry("/data/f1.rf", "1", file_closed(10)),
        ])

        with patch("coordinator.work_assigner.ReplicationTable.try_batch_scanner", return_value=scanner):
            assert assigner.create_work() == 1

        assert scanner.consumed == 3

    def test_missing_replication_table(self, assigner, work_queue):
        assert assigner.create_work() == 0
        assert work_queue.get_work_queued() == []

    def test_scanner_open_failure_is_not_fatal(self, assigner):
        with patch(
            "coordinator.work_assigner.ReplicationTable.try_batch_scanner",
            side_effect=TableServiceError("store unavailable")
        ):
            assert assigner.create_work() == 0

    def test_scan_failure_closes_scanner(self, assigner):
        assigner.work_queue = MagicMock()
        scanner = FakeScanner(
            [_work_entry(f"/data/f{i}.rf", "1", file_closed(10)) for i in range(3)],
            fail_after=1
        )

        with patch("coordinator.work_assigner.ReplicationTable.try_batch_scanner", return_value=scanner):
            queued = assigner.create_work()

        assert queued == 1
        assert scanner.closed
        assert assigner.queued_work == {"f0.rf|1"}

    def test_scanner_closed_after_full_pass(self, assigner):
        assigner.work_queue = MagicMock()
        scanner = FakeScanner([_work_entry("/data/f1.rf", "1", file_closed(10))])

        with patch("coordinator.work_assigner.ReplicationTable.try_batch_scanner", return_value=scanner):
            assigner.create_work()

        assert scanner.closed
        assert scanner.consumed == 1

    def test_unknown_length_file_queued(self, assigner, work_queue, write_work_entries):
        write_work_entries([("/wal/host+9997/0a1b", "2", Status(infinite_end=True, closed=True).to_bytes())])

        assert assigner.create_work() == 1
        assert work_queue.get_work("0a1b|2") == "/wal/host+9997/0a1b"


class TestCleanupFinishedWork:
    """Test reconciliation of queued work against the queue."""

    def test_finished_work_removed(self, assigner, work_queue, write_work_entries):
        write_work_entries([
            ("/data/f1.rf", "1", file_closed(10).to_bytes()),
            ("/data/f2.rf", "1", file_closed(10).to_bytes()),
        ])
        assigner.create_work()

        work_queue.remove_work("f1.rf|1")

        assert assigner.cleanup_finished_work() == 1
        assert assigner.queued_work == {"f2.rf|1"}

    def test_in_flight_work_kept(self, assigner, work_queue):
        work_queue.add_work("f1.rf|1", "/data/f1.rf")
        assigner.queued_work.add("f1.rf|1")

        assert assigner.cleanup_finished_work() == 0
        assert assigner.queued_work == {"f1.rf|1"}

    def test_unreadable_node_kept(self, assigner):
        assigner.queued_work = {"f1.rf|1", "f2.rf|1"}
        def get_work(key):
            if key == "f1.rf|1":
                raise WorkQueueError("timeout")
            return None

        assigner.work_queue = MagicMock()
        assigner.work_queue.get_work.side_effect = get_work

        assert assigner.cleanup_finished_work() == 1
        assert assigner.queued_work == {"f1.rf|1"}

    def test_cleanup_drains_backpressure(self, assigner, work_queue, write_work_entries):
        assigner.max_queue_size = 0
        write_work_entries([
            ("/data/f1.rf", "1", file_closed(10).to_bytes()),
            ("/data/f2.rf", "1", file_closed(10).to_bytes()),
            ("/data/f3.rf", "1", file_closed(10).to_bytes()),
        ])

        assert assigner.create_work() == 1
        assert assigner.create_work() == 0

        for key in work_queue.get_work_queued():
            work_queue.remove_work(key)
        assigner.cleanup_finished_work()

        assert assigner.queued_work == set()
        assert assigner.create_work() >= 1


class TestCycle:
    """Test the per-cycle state machine."""

    def test_cycle_dispatches_then_reconciles(self, context, work_queue, write_work_entries):
        write_work_entries([("/data/f1.rf", "1", file_closed(10).to_bytes())])
        assigner = WorkAssigner(context)

        assigner.run_cycle()

        assert assigner.queued_work == {"f1.rf|1"}
        assert work_queue.get_work("f1.rf|1") == "/data/f1.rf"

    def test_order_of_steps(self, context):
        assigner = WorkAssigner(context)
        calls = []
        assigner.initialize = lambda: calls.append("initialize")
        assigner.create_work = lambda: calls.append("create_work")
        assigner.cleanup_finished_work = lambda: calls.append("cleanup_finished_work")

        assigner.run_cycle()

        assert calls == ["initialize", "create_work", "cleanup_finished_work"]

    def test_ceiling_reread_every_cycle(self, context):
        assigner = WorkAssigner(context)

        assigner.run_cycle()
        assert assigner.max_queue_size == 10

        context.config.set("max_work_queue", 3)
        assigner.run_cycle()
        assert assigner.max_queue_size == 3

    def test_cleanup_runs_after_aborted_pass(self, context, work_queue, write_work_entries):
        context.config.set("max_work_queue", 0)
        write_work_entries([("/data/c.rf", "1", file_closed(10).to_bytes())])
        work_queue.add_work("a.rf|1", "/data/a.rf")
        work_queue.add_work("b.rf|1", "/data/b.rf")
        assigner = WorkAssigner(context)
        assigner.initialize()
        work_queue.remove_work("a.rf|1")

        assigner.run_cycle()

        assert assigner.queued_work == {"b.rf|1"}

    def test_run_stops_when_no_longer_coordinator(self, context):
        context.still_coordinator = MagicMock(side_effect=[True, True, False])
        assigner = WorkAssigner(context)
        assigner.run_cycle = MagicMock()

        assigner.run()

        assert assigner.run_cycle.call_count == 2

    def test_run_never_cycles_without_coordinator_status(self, context):
        context.still_coordinator = lambda: False
        assigner = WorkAssigner(context)
        assigner.run_cycle = MagicMock()

        assigner.run()

        assigner.run_cycle.assert_not_called()

    def test_run_retries_after_transient_failure(self, context):
        context.still_coordinator = MagicMock(side_effect=[True, True, False])
        assigner = WorkAssigner(context)
        assigner.run_cycle = MagicMock(side_effect=[WorkQueueError("session expired"), None])

        assigner.run()

        assert assigner.run_cycle.call_count == 2

    def test_run_retries_failed_recovery(self, context, work_queue):
        work_queue.add_work("a.rf|1", "/data/a.rf")
        context.still_coordinator = MagicMock(side_effect=[True, True, False])
        with patch.object(
            SqliteWorkQueue, "get_work_queued",
            side_effect=[WorkQueueError("no quorum"), ["a.rf|1"]]
        ):
            assigner = WorkAssigner(context)
            assigner.run()

        assert assigner.queued_work == {"a.rf|1"}

    def test_run_stops_on_inconsistent_state(self, context):
        context.still_coordinator = MagicMock(return_value=True)
        assigner = WorkAssigner(context)
        assigner.run_cycle = MagicMock(side_effect=QueuedWorkStateError("initialized twice"))

        with pytest.raises(QueuedWorkStateError):
            assigner.run()

        assert assigner.run_cycle.call_count == 1
