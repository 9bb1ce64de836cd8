"""Tests for the Redis-backed job queue."""

from unittest.mock import MagicMock

import pytest

from pap.queue.models import QueueEntry
from pap.queue.redis_queue import RedisJobQueue


@pytest.fixture
def mock_redis() -> MagicMock:
    return MagicMock()


@pytest.fixture
def queue(mock_redis) -> RedisJobQueue:
    return RedisJobQueue(mock_redis, key="test:queue")


class TestRedisJobQueue:
    """Test the sorted-set commands issued for each queue operation."""

    def test_should_add_only_new_members(self, queue, mock_redis):
        mock_redis.zadd.return_value = 1

        assert queue.enqueue("abc", 12.5) is True
        mock_redis.zadd.assert_called_once_with("test:queue", {"abc": 12.5}, nx=True)

    def test_should_report_existing_member(self, queue, mock_redis):
        mock_redis.zadd.return_value = 0

        assert queue.enqueue("abc", 12.5) is False

    def test_should_pop_lowest_score(self, queue, mock_redis):
        mock_redis.zpopmin.return_value = [(b"abc", 12.5)]

        assert queue.dequeue() == QueueEntry(enqueued_at=12.5, hash="abc")
        mock_redis.zpopmin.assert_called_once_with("test:queue", 1)

    def test_should_return_none_when_empty(self, queue, mock_redis):
        mock_redis.zpopmin.return_value = []

        assert queue.dequeue() is None

    def test_should_convert_rank_to_position(self, queue, mock_redis):
        mock_redis.zrank.return_value = 0
        assert queue.position_of("abc") == 1

        mock_redis.zrank.return_value = None
        assert queue.position_of("abc") is None

    def test_should_snapshot_in_order(self, queue, mock_redis):
        mock_redis.zrange.return_value = [(b"a", 1.0), ("b", 2.0)]

        assert queue.snapshot() == [QueueEntry(1.0, "a"), QueueEntry(2.0, "b")]
        mock_redis.zrange.assert_called_once_with("test:queue", 0, -1, withscores=True)

    def test_should_discard_and_clear(self, queue, mock_redis):
        mock_redis.zrem.return_value = 1

        assert queue.discard("a") is True
        queue.clear()

        mock_redis.zrem.assert_called_once_with("test:queue", "a")
        mock_redis.delete.assert_called_once_with("test:queue")

    def test_should_measure_length_and_membership(self, queue, mock_redis):
        mock_redis.zcard.return_value = 4
        mock_redis.zscore.side_effect = [3.0, None]

        assert len(queue) == 4
        assert "a" in queue
        assert "b" not in queue
        assert 42 not in queue
