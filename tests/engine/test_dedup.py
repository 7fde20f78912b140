from __future__ import annotations

import itertools

import pytest

from trade_harvester.engine import Deduplicator, MergedSet, key_from_fields, recency_from_field
from trade_harvester.engine.dedup import MergeAction


def _dedup() -> Deduplicator:
    return Deduplicator(
        identity_key=key_from_fields(["portfolioId", "orderId"]),
        recency=recency_from_field("updateTime"),
    )


def _order(order_id: str, update_time: int, portfolio: str = "p1", **extra) -> dict:
    return {"portfolioId": portfolio, "orderId": order_id, "updateTime": update_time, **extra}


def test_most_recent_record_wins_regardless_of_order() -> None:
    old = _order("o1", 100, status="NEW")
    new = _order("o1", 200, status="FILLED")
    other = _order("o2", 150)

    results = [
        _dedup().merge(list(batches))
        for batches in itertools.permutations([[old], [new], [other]])
    ]

    for merged in results:
        assert len(merged) == 2
        assert merged["p1|o1"]["status"] == "FILLED"
        assert merged.recency_of("p1|o1") == 200
    assert all(merged == results[0] for merged in results)


def test_equal_recency_keeps_first_seen() -> None:
    first = _order("o1", 100, note="first")
    second = _order("o1", 100, note="second")

    merged = _dedup().merge([[first], [second]])

    assert merged["p1|o1"]["note"] == "first"
    assert merged.stats.kept == 1


def test_merging_twice_is_idempotent() -> None:
    batches = [[_order("o1", 1), _order("o2", 2)], [_order("o1", 3)]]
    dedup = _dedup()

    once = dedup.merge(batches)
    twice = dedup.merge(batches, into=dedup.merge(batches))

    assert once == twice
    assert once.as_dict() == twice.as_dict()


def test_identity_spans_sources() -> None:
    merged = _dedup().merge([[_order("o1", 1, portfolio="p1"), _order("o1", 1, portfolio="p2")]])
    assert sorted(merged.keys()) == ["p1|o1", "p2|o1"]


def test_unkeyed_records_are_skipped() -> None:
    dedup = _dedup()
    merged = dedup.merge([[{"updateTime": 5}, _order("o1", 1)]])
    assert len(merged) == 1
    assert dedup.skipped == 1


def test_apply_reports_action_and_frozen_set_rejects_writes() -> None:
    merged = MergedSet()
    assert merged.apply("k", 1, "a") is MergeAction.INSERTED
    assert merged.apply("k", 2, "b") is MergeAction.REPLACED
    assert merged.apply("k", 2, "c") is MergeAction.KEPT
    assert list(merged) == ["b"]

    merged.freeze()
    assert merged.frozen
    with pytest.raises(RuntimeError):
        merged.apply("k", 3, "d")


def test_recency_parsing_falls_back_to_default() -> None:
    recency = recency_from_field("updateTime", default=-1.0)
    assert recency({"updateTime": "1700000000000"}) == 1700000000000.0
    assert recency({"updateTime": "n/a"}) == -1.0
    assert recency({}) == -1.0


def test_key_requires_fields() -> None:
    with pytest.raises(ValueError):
        key_from_fields([])


def test_merge_is_associative_across_batches() -> None:
    a = [_order("o1", 100, src="a"), _order("o2", 50, src="a"), _order("o3", 7, src="a")]
    b = [_order("o1", 300, src="b"), _order("o2", 50, src="b")]
    c = [_order("o1", 200, src="c"), _order("o3", 9, src="c"), _order("o4", 1, src="c")]

    all_at_once = _dedup().merge([a, b, c])
    fed_back = _dedup().merge([_dedup().merge([a, b]), c])
    continued = _dedup().merge([c], into=_dedup().merge([a, b]))

    for merged in (fed_back, continued):
        assert merged == all_at_once
        assert merged.as_dict() == all_at_once.as_dict()
    assert all_at_once["p1|o1"]["src"] == "b"
    assert all_at_once["p1|o2"]["src"] == "a"
    assert all_at_once["p1|o3"]["src"] == "c"
    assert len(all_at_once) == 4
