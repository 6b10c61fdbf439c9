"""Tests for the coordination-store backed work queue."""

import pytest

from coordinator.exceptions import WorkQueueError
from coordinator.work_queue import SqliteWorkQueue


class TestWorkQueue:
    """Test queue node operations."""

    def test_empty_queue(self, work_queue):
        assert work_queue.get_work_queued() == []
        assert work_queue.get_work("f1.rf|1") is None

    def test_add_and_read_work(self, work_queue):
        work_queue.add_work("f1.rf|1", "/data/f1.rf")

        assert work_queue.get_work_queued() == ["f1.rf|1"]
        assert work_queue.get_work("f1.rf|1") == "/data/f1.rf"

    def test_last_write_wins(self, work_queue):
        work_queue.add_work("f1.rf|1", "/old/f1.rf")
        work_queue.add_work("f1.rf|1", "/new/f1.rf")

        assert work_queue.get_work_queued() == ["f1.rf|1"]
        assert work_queue.get_work("f1.rf|1") == "/new/f1.rf"

    def test_remove_work(self, work_queue):
        work_queue.add_work("f1.rf|1", "/data/f1.rf")

        assert work_queue.remove_work("f1.rf|1") is True
        assert work_queue.remove_work("f1.rf|1") is False
        assert work_queue.get_work("f1.rf|1") is None

    @pytest.mark.parametrize("key", ["", "a/b|1", "..", "."])
    def test_invalid_node_names(self, work_queue, key):
        with pytest.raises(WorkQueueError):
            work_queue.add_work(key, "/data/f")

    def test_roots_are_isolated(self, tmp_path):
        db_path = str(tmp_path / "coordination.db")
        first = SqliteWorkQueue(db_path, "/instances/a/replication/workqueue")
        second = SqliteWorkQueue(db_path, "/instances/b/replication/workqueue/")

        first.add_work("f1.rf|1", "/data/f1.rf")

        assert second.get_work_queued() == []
        assert second.root == "/instances/b/replication/workqueue"

    def test_queue_survives_reopen(self, tmp_path):
        db_path = str(tmp_path / "coordination.db")
        SqliteWorkQueue(db_path, "/q").add_work("f1.rf|1", "/data/f1.rf")

        reopened = SqliteWorkQueue(db_path, "/q")

        assert reopened.get_work_queued() == ["f1.rf|1"]

    def test_unusable_store_raises_work_queue_error(self, tmp_path):
        with pytest.raises(WorkQueueError):
            SqliteWorkQueue(str(tmp_path), "/q")
