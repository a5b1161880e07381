"""Typed errors raised inside the MovilityAI pipeline stages.

Stages raise these; the orchestrator records them on the run state instead
of letting them escape to the caller.
"""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class MovilityError(Exception):
    """Base error for the trip planning domain.

    Attributes:
        message: Human-readable error description
        cause: Optional underlying exception
    """

    message: str
    cause: Exception | None = field(default=None, repr=False)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message

    def __post_init__(self) -> None:
        super().__init__(self.message)


@dataclass
class ForecastModelError(MovilityError):
    """The seasonal model could not be fitted on the given series."""

    zone: str = ""


@dataclass
class PlanningError(MovilityError):
    """No transport mode produced a usable route candidate."""

    modes: tuple[str, ...] = ()


@dataclass
class DirectionsError(MovilityError):
    """The directions provider returned an unusable response."""

    mode: str = ""
    status: str | None = None


@dataclass
class AlertSourceError(MovilityError):
    """The alert feed could not be read or returned invalid data."""

    source: str = ""


@dataclass
class SnapshotValidationError(MovilityError):
    """An alert snapshot file is missing required columns."""

    path: str | None = None
