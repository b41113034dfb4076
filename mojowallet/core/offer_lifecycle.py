from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class OfferStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset(
    {OfferStatus.COMPLETED, OfferStatus.CANCELLED, OfferStatus.EXPIRED}
)


class OfferBuildStage(StrEnum):
    BUILDING = "building"
    CONSTRUCTED = "constructed"
    SUBMITTED = "submitted"


@dataclass(frozen=True, slots=True)
class OfferStatusTransition:
    old_status: OfferStatus
    new_status: OfferStatus
    action: str
    reason: str

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status


def parse_offer_status(value: object) -> OfferStatus:
    try:
        return OfferStatus(str(value).strip().lower())
    except ValueError as exc:
        raise ValueError(f"unknown_offer_status:{value}") from exc


def apply_status_change(current: OfferStatus, requested: OfferStatus) -> OfferStatusTransition:
    """Resolve a requested status change.

    Repeating the current status is a no-op. Only ``active`` may move on; a
    terminal offer never reopens. Callers turn ``action == "reject"`` into an
    error.
    """
    if requested == current:
        return OfferStatusTransition(
            old_status=current,
            new_status=current,
            action="noop",
            reason="status_unchanged",
        )
    if current == OfferStatus.ACTIVE:
        return OfferStatusTransition(
            old_status=current,
            new_status=requested,
            action=f"mark_{requested.value}",
            reason=f"offer_{requested.value}",
        )
    return OfferStatusTransition(
        old_status=current,
        new_status=current,
        action="reject",
        reason=f"terminal_status:{current.value}",
    )
