"""Tests for the relational store functions."""

from datetime import datetime, timedelta

from shared.database import (
    SEED_FEEDBACK,
    count_feedback_by_category,
    get_grouped_counts,
    get_recent_feedback,
    get_stat,
    insert_feedback,
    seed_feedback,
    upsert_stat,
)
from shared.helpers import from_json


def _classification(category="bug", sentiment="negative", urgency="high"):
    return {"sentiment": sentiment, "category": category, "urgency": urgency, "reason": "test"}


class TestInsertFeedback:
    """Tests for insert_feedback()."""

    def test_assigns_id_and_timestamp(self, engine):
        record_id = insert_feedback(engine, "Discord", "slow page", _classification())

        [record] = get_recent_feedback(engine)
        assert record["id"] == record_id
        assert record["source"] == "Discord"
        assert record["content"] == "slow page"
        assert record["category"] == "bug"
        assert record["reason"] == "test"
        assert record["created_at"]

    def test_created_at_is_utc(self, engine):
        insert_feedback(engine, "Discord", "slow page", _classification())

        [record] = get_recent_feedback(engine)
        created_at = datetime.fromisoformat(record["created_at"])
        assert created_at.tzinfo is not None
        assert created_at.utcoffset() == timedelta(0)

    def test_run_id_makes_insert_idempotent(self, engine):
        first = insert_feedback(engine, "Discord", "slow page", _classification(), run_id="run-1")
        second = insert_feedback(engine, "Discord", "slow page", _classification(), run_id="run-1")

        assert first == second
        assert count_feedback_by_category(engine, "bug") == 1

    def test_without_run_id_every_insert_is_new(self, engine):
        insert_feedback(engine, "Discord", "slow page", _classification())
        insert_feedback(engine, "Discord", "slow page", _classification())

        assert count_feedback_by_category(engine, "bug") == 2


class TestRecentFeedback:
    """Tests for get_recent_feedback()."""

    def test_newest_first_and_limited_to_50(self, engine):
        for i in range(55):
            insert_feedback(engine, "Email", f"message {i}", _classification())

        records = get_recent_feedback(engine)

        assert len(records) == 50
        ids = [record["id"] for record in records]
        assert ids == sorted(ids, reverse=True)
        assert records[0]["content"] == "message 54"

    def test_empty_store(self, engine):
        assert get_recent_feedback(engine) == []


class TestGroupedCounts:
    """Tests for get_grouped_counts()."""

    def test_groups_every_dimension(self, engine):
        insert_feedback(engine, "Discord", "a", _classification("bug", "negative", "high"))
        insert_feedback(engine, "GitHub", "b", _classification("bug", "neutral", "low"))
        insert_feedback(engine, "Email", "c", _classification("feature", "positive", "low"))

        grouped = get_grouped_counts(engine)

        assert sorted(grouped["categories"], key=lambda g: g["category"]) == [
            {"category": "bug", "count": 2},
            {"category": "feature", "count": 1},
        ]
        assert {g["sentiment"]: g["count"] for g in grouped["sentiments"]} == {
            "negative": 1, "neutral": 1, "positive": 1,
        }
        assert {g["urgency"]: g["count"] for g in grouped["urgency"]} == {"high": 1, "low": 2}

    def test_empty_store(self, engine):
        assert get_grouped_counts(engine) == {"categories": [], "sentiments": [], "urgency": []}


class TestStats:
    """Tests for upsert_stat() and get_stat()."""

    def test_insert_then_replace(self, engine):
        upsert_stat(engine, "category_bug", {"count": 1})
        upsert_stat(engine, "category_bug", {"count": 2})

        stat = get_stat(engine, "category_bug")
        assert from_json(stat["stat_value"]) == {"count": 2}
        assert stat["updated_at"]

    def test_one_row_per_key(self, engine):
        upsert_stat(engine, "category_bug", {"count": 1})
        first_id = get_stat(engine, "category_bug")["id"]
        upsert_stat(engine, "category_bug", {"count": 5})

        assert get_stat(engine, "category_bug")["id"] == first_id

    def test_missing_stat(self, engine):
        assert get_stat(engine, "category_nothing") is None


def test_seed_feedback(engine):
    assert seed_feedback(engine) == len(SEED_FEEDBACK)
    assert count_feedback_by_category(engine, "bug") == 2
    assert count_feedback_by_category(engine, "feature") == 2
