"""Tests for rating record parsing and score aggregation."""

import pytest

from alsupdate.exceptions import MalformedRecordError
from alsupdate.recommender.ratings import (
    DELETE,
    AggregatedRating,
    Delete,
    RatingEvent,
    Value,
    aggregate_scores,
    combine_implicit,
    known_ids_index,
    order_by_time,
    parse_event,
    parse_events,
    parse_line,
    to_aggregated_ratings,
)


def test_parse_line_csv():
    assert parse_line("1,10,4.0,100") == ["1", "10", "4.0", "100"]


def test_parse_line_json_array():
    assert parse_line('["1","10","4.0","100"]') == ["1", "10", "4.0", "100"]


def test_parse_line_json_null_score_is_empty():
    assert parse_line("[1, 10, null, 100]") == ["1", "10", "", "100"]


@pytest.mark.parametrize("line", ["1,10,4.0", "1,10,4.0,100,7", "[1, 10, 100]", "[1, 10"])
def test_parse_line_rejects_wrong_arity(line):
    with pytest.raises(MalformedRecordError) as exc_info:
        parse_line(line)

    assert exc_info.value.status_code == 400
    assert exc_info.value.details["record"] == line


def test_parse_event_value():
    event = parse_event("1,10,4.5,100")

    assert event == RatingEvent(1, 10, Value(4.5), 100)
    assert not event.is_delete


def test_parse_event_empty_score_is_delete():
    event = parse_event("1,10,,200")

    assert event.score is DELETE
    assert event.is_delete


def test_parse_event_nan_score_is_delete():
    assert parse_event("1,10,NaN,200").score is DELETE


def test_delete_is_singleton():
    assert Delete() is DELETE
    assert repr(DELETE) == "DELETE"


@pytest.mark.parametrize(
    "line",
    [
        "abc,10,1.0,100",
        "1,10,high,100",
        "1,10,1.0,yesterday",
        "3000000000,10,1.0,100",
    ],
)
def test_parse_event_rejects_bad_fields(line):
    with pytest.raises(MalformedRecordError):
        parse_event(line)


def test_parse_events_skips_malformed_by_default(caplog):
    lines = ["1,10,4.0,100", "garbage", "", "2,20,3.0,150"]

    events = parse_events(lines)

    assert [(e.user, e.item) for e in events] == [(1, 10), (2, 20)]
    assert "Dropped 1 malformed records" in caplog.text


def test_parse_events_strict_fails_batch():
    with pytest.raises(MalformedRecordError):
        parse_events(["1,10,4.0,100", "garbage"], skip_malformed=False)


def test_order_by_time_is_stable():
    events = [
        RatingEvent(1, 10, Value(1.0), 200),
        RatingEvent(1, 10, Value(2.0), 100),
        RatingEvent(1, 10, Value(3.0), 200),
    ]

    ordered = order_by_time(events)

    assert [e.score.score for e in ordered] == [2.0, 1.0, 3.0]


def test_explicit_aggregation_last_write_wins():
    events = order_by_time([parse_event("1,10,5,1"), parse_event("1,10,8,2")])

    assert aggregate_scores(events, implicit=False) == [AggregatedRating(1, 10, 8.0)]


def test_explicit_aggregation_uses_time_not_arrival_order():
    ratings = to_aggregated_ratings(["1,10,8,2", "1,10,5,1"], implicit=False)

    assert ratings == [AggregatedRating(1, 10, 8.0)]


def test_implicit_aggregation_sums():
    ratings = to_aggregated_ratings(["1,10,1,1", "1,10,2,2", "1,10,3,3"], implicit=True)

    assert ratings == [AggregatedRating(1, 10, 6.0)]


def test_implicit_delete_then_new_value_restarts_sum():
    lines = ["1,10,3,1", "1,10,NaN,2", "1,10,4,3"]

    assert to_aggregated_ratings(lines, implicit=True) == [AggregatedRating(1, 10, 4.0)]


@pytest.mark.parametrize("implicit", [True, False])
def test_trailing_delete_drops_pair(implicit):
    lines = ["1,10,3,1", "1,10,,2", "2,20,1,1"]

    ratings = to_aggregated_ratings(lines, implicit=implicit)

    assert ratings == [AggregatedRating(2, 20, 1.0)]


def test_explicit_delete_then_value_keeps_value():
    ratings = to_aggregated_ratings(["1,10,,1", "1,10,2,2"], implicit=False)

    assert ratings == [AggregatedRating(1, 10, 2.0)]


def test_combine_implicit_cases():
    assert combine_implicit(DELETE, Value(2.0)) == Value(2.0)
    assert combine_implicit(Value(2.0), DELETE) is DELETE
    assert combine_implicit(Value(2.0), Value(3.0)) == Value(5.0)


def test_aggregation_output_sorted_by_pair():
    lines = ["2,1,1,1", "1,2,1,2", "1,1,1,3"]

    ratings = to_aggregated_ratings(lines, implicit=True)

    assert [(r.user, r.item) for r in ratings] == [(1, 1), (1, 2), (2, 1)]


def test_known_ids_index_by_user_includes_deletes():
    lines = ["1,10,1,1", "1,20,,2", "2,10,1,3"]

    assert known_ids_index(lines) == {1: {10, 20}, 2: {10}}


def test_known_ids_index_by_item():
    lines = ["1,10,1,1", "2,10,1,2", "2,20,1,3"]

    assert known_ids_index(lines, by_user=False) == {10: {1, 2}, 20: {2}}
