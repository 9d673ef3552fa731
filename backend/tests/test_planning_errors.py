from __future__ import annotations

import pytest

from fiber_planner.planning_errors import (
    FROZEN_REASON_CODES,
    MalformedGeometryError,
    PlanningCancelledError,
    PlanningConfigError,
    PlanningError,
    normalize_reason_code,
)


def test_error_classes_carry_reason_codes_in_the_frozen_set() -> None:
    errors = [
        MalformedGeometryError("bad segment", segment_index=3),
        PlanningConfigError("bad radius", max_radius=-1.0),
        PlanningCancelledError(cause="timeout"),
    ]

    assert [e.reason_code for e in errors] == [
        "malformed_geometry",
        "invalid_planning_config",
        "planning_cancelled",
    ]
    for err in errors:
        assert isinstance(err, PlanningError)
        assert isinstance(err, ValueError)
        assert err.reason_code in FROZEN_REASON_CODES


def test_error_message_and_details() -> None:
    err = MalformedGeometryError("segment 3 has 1 vertices", segment_index=3, segment_id="r-9")
    assert str(err) == "segment 3 has 1 vertices"
    assert err.details == {"segment_index": 3, "segment_id": "r-9"}

    assert MalformedGeometryError("no location").details is None
    assert PlanningConfigError("bad", max_radius=-1.0).details == {"max_radius": -1.0}
    assert PlanningCancelledError().details == {"cause": "cancel_event"}


def test_errors_can_be_raised_and_caught_as_value_errors() -> None:
    with pytest.raises(ValueError, match="planning run cancelled"):
        raise PlanningCancelledError()


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("unreachable", "unreachable"),
        (" snap_failure ", "snap_failure"),
        ("no_route_found", "planning_failed"),
        ("", "planning_failed"),
    ],
)
def test_normalize_reason_code(code: str, expected: str) -> None:
    assert normalize_reason_code(code) == expected


def test_normalize_reason_code_custom_default() -> None:
    assert normalize_reason_code("mystery", default="unreachable") == "unreachable"
