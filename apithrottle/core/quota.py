"""Quota value types.

A quota is a set of fixed, wall-clock aligned windows (minute, hour, day),
each with its own request limit. A limit of 0 means the window is not
constrained at all; it never means "zero requests allowed".
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from apithrottle.core.errors import QuotaConfigError


class WindowKind(Enum):
    """Fixed window granularities, in the positional order sent to the store."""

    MINUTE = ("m", 60)
    HOUR = ("h", 3600)
    DAY = ("d", 86400)

    def __init__(self, tag: str, seconds: int) -> None:
        self.tag = tag
        self.seconds = seconds


class ThrottleVerdict(Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class QuotaSpec:
    """Per-operation limits for the minute, hour and day windows.

    Attributes:
        per_minute: Max requests per wall-clock minute (0 = unconstrained).
        per_hour: Max requests per wall-clock hour (0 = unconstrained).
        per_day: Max requests per UTC day (0 = unconstrained).

    Raises:
        QuotaConfigError: If any limit is negative or not an integer.
    """

    per_minute: int = 0
    per_hour: int = 0
    per_day: int = 0

    def __post_init__(self) -> None:
        for kind, value in zip(WindowKind, self.limits):
            if isinstance(value, bool) or not isinstance(value, int):
                raise QuotaConfigError(
                    code="invalid_quota_limit",
                    message=f"{kind.name.lower()} limit must be an integer",
                    details={"field": kind.name.lower(), "value": value},
                )
            if value < 0:
                raise QuotaConfigError(
                    code="negative_quota_limit",
                    message=f"{kind.name.lower()} limit must be >= 0",
                    details={"field": kind.name.lower(), "value": value},
                )

    @property
    def limits(self) -> tuple[int, int, int]:
        """Limits ordered like WindowKind: (minute, hour, day)."""
        return (self.per_minute, self.per_hour, self.per_day)

    @property
    def is_unconstrained(self) -> bool:
        return not any(self.limits)

    def as_dict(self) -> dict[str, int]:
        return {
            "per_minute": self.per_minute,
            "per_hour": self.per_hour,
            "per_day": self.per_day,
        }


class QuotaDeclaration(BaseModel):
    """Schema for quota configuration coming from settings or decorators."""

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)

    per_minute: int = Field(0, ge=0)
    per_hour: int = Field(0, ge=0)
    per_day: int = Field(0, ge=0)


def quota_from_mapping(data: Mapping[str, Any]) -> QuotaSpec:
    """Parse one quota declaration into a QuotaSpec.

    Args:
        data: Mapping with any of per_minute, per_hour, per_day.

    Returns:
        Validated QuotaSpec.

    Raises:
        QuotaConfigError: If the mapping has unknown keys, wrong types or
            negative limits.

    Examples:
        >>> quota_from_mapping({"per_minute": 2})
        QuotaSpec(per_minute=2, per_hour=0, per_day=0)
    """

    if not isinstance(data, Mapping):
        raise QuotaConfigError(
            code="invalid_quota_declaration",
            message="quota declaration must be a mapping",
            details={"value": repr(data)},
        )
    try:
        declaration = QuotaDeclaration.model_validate(dict(data))
    except ValidationError as exc:
        raise QuotaConfigError(
            code="invalid_quota_declaration",
            message="quota declaration is malformed",
            details={"context": {"errors": exc.errors(include_url=False)}},
        ) from exc
    return QuotaSpec(**declaration.model_dump())
