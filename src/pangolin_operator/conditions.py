"""Ready condition bookkeeping shared by every reconciler.

Conditions are kept as an ordered list keyed by type. Writing a condition
replaces the entry of the same type in place; lastTransitionTime only moves
when the boolean status flips.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from .models import BaseStatus, Condition, KubeObject

READY_CONDITION = "Ready"


class ReconcileOutcome(str, Enum):
    """Values recorded in ``status.status``."""

    READY = "Ready"
    WAITING = "Waiting"
    ERROR = "Error"


# Condition reason per outcome
OUTCOME_REASONS: dict[ReconcileOutcome, str] = {
    ReconcileOutcome.READY: "ReconcileSuccess",
    ReconcileOutcome.WAITING: "DependencyNotReady",
    ReconcileOutcome.ERROR: "ReconcileError",
}


def get_condition(status: BaseStatus, condition_type: str) -> Condition | None:
    """Return the condition of the given type, if any."""
    for condition in status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def upsert_condition(
    status: BaseStatus,
    condition_type: str,
    is_true: bool,
    reason: str,
    message: str,
    observed_generation: int,
    now: datetime | None = None,
) -> Condition:
    """Insert or update a condition, preserving transition time unless status flips.

    Args:
        status: Status block to modify in place.
        condition_type: Condition type, e.g. "Ready".
        is_true: Desired boolean status.
        reason: Machine-readable reason.
        message: Human-readable message.
        observed_generation: Generation the condition was computed from.
        now: Timestamp to use for a transition (default: current UTC time).

    Returns:
        The condition as stored.
    """
    now = now or datetime.now(UTC)
    new_status = "True" if is_true else "False"

    for index, existing in enumerate(status.conditions):
        if existing.type != condition_type:
            continue
        transition_time = (
            existing.last_transition_time if existing.status == new_status else now
        )
        updated = Condition(
            type=condition_type,
            status=new_status,
            reason=reason,
            message=message,
            last_transition_time=transition_time,
            observed_generation=observed_generation,
        )
        status.conditions[index] = updated
        return updated

    created = Condition(
        type=condition_type,
        status=new_status,
        reason=reason,
        message=message,
        last_transition_time=now,
        observed_generation=observed_generation,
    )
    status.conditions.append(created)
    return created


def set_ready(
    obj: KubeObject,
    outcome: ReconcileOutcome,
    message: str,
    now: datetime | None = None,
) -> Condition:
    """Record a reconcile outcome on an object's status.

    Sets ``status.status``, stamps ``status.observedGeneration`` and upserts
    the Ready condition.
    """
    status: BaseStatus = obj.status  # type: ignore[attr-defined]
    generation = obj.metadata.generation

    status.status = outcome.value
    status.observed_generation = generation
    return upsert_condition(
        status,
        READY_CONDITION,
        is_true=outcome == ReconcileOutcome.READY,
        reason=OUTCOME_REASONS[outcome],
        message=message,
        observed_generation=generation,
        now=now,
    )


def is_ready(obj: KubeObject) -> bool:
    """Check whether an object's last persisted Ready condition is True."""
    status: BaseStatus | None = getattr(obj, "status", None)
    if status is None:
        return False
    condition = get_condition(status, READY_CONDITION)
    return condition is not None and condition.status == "True"
