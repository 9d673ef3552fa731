from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "malformed_geometry",
        "invalid_planning_config",
        "invalid_point_input",
        "snap_failure",
        "unreachable",
        "planning_cancelled",
        "planning_failed",
    }
)


@dataclass
class PlanningError(ValueError):
    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class MalformedGeometryError(PlanningError):
    """A road segment cannot be turned into graph edges. Fatal to the whole run."""

    def __init__(
        self,
        message: str,
        *,
        segment_index: int | None = None,
        segment_id: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if segment_index is not None:
            details["segment_index"] = int(segment_index)
        if segment_id is not None:
            details["segment_id"] = str(segment_id)
        super().__init__(
            reason_code="malformed_geometry",
            message=message,
            details=details or None,
        )


class PlanningConfigError(PlanningError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(
            reason_code="invalid_planning_config",
            message=message,
            details=dict(details) or None,
        )


class InvalidPointInputError(PlanningError):
    """A points file row that cannot become a PlanningPointIn."""

    def __init__(
        self,
        message: str,
        *,
        row_number: int | None = None,
        point_id: str | None = None,
    ) -> None:
        details: dict[str, Any] = {}
        if row_number is not None:
            details["row_number"] = int(row_number)
        if point_id:
            details["point_id"] = str(point_id)
        super().__init__(
            reason_code="invalid_point_input",
            message=message,
            details=details or None,
        )


class PlanningCancelledError(PlanningError):
    """The run was aborted by the caller or hit its deadline; no RouteSet exists."""

    def __init__(self, message: str = "planning run cancelled", *, cause: str = "cancel_event") -> None:
        super().__init__(
            reason_code="planning_cancelled",
            message=message,
            details={"cause": cause},
        )


def normalize_reason_code(reason_code: str, *, default: str = "planning_failed") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
