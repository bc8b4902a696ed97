"""Transition rules for audit findings.

Cardholder responses propose a new finding status; auditor responses settle
it. A finding only becomes ``resolved`` when an auditor accepts a cardholder
``resolve`` response. ``disputed`` is terminal as well: an auditor may escalate
or accept it, and either way it stays disputed.
"""
from __future__ import annotations

from dataclasses import dataclass

OPEN = "open"
ACKNOWLEDGED = "acknowledged"
IN_PROGRESS = "in_progress"
RESOLVED = "resolved"
DISPUTED = "disputed"

CARDHOLDER_TRANSITIONS = {
    "acknowledge": ACKNOWLEDGED,
    "resolve": IN_PROGRESS,
    "request_extension": IN_PROGRESS,
    "dispute": DISPUTED,
}

# cardholder response status / auditor response status per auditor response
AUDITOR_OUTCOMES = {
    "accept": ("accepted", "final"),
    "reject": ("rejected", "pending_cardholder_response"),
    "request_more_info": ("needs_revision", "pending_cardholder_response"),
    "escalate": (None, "final"),
}


class InvalidTransition(ValueError):
    pass


@dataclass(frozen=True)
class AuditorDecision:
    finding_status: str
    cardholder_response_status: str | None
    auditor_response_status: str
    extend_due_date: bool = False


def accepts_cardholder_response(status: str) -> bool:
    return status not in {RESOLVED, DISPUTED}


def cardholder_transition(status: str, response_type: str) -> str:
    if response_type not in CARDHOLDER_TRANSITIONS:
        raise InvalidTransition(f"Unknown cardholder response type: {response_type}")
    if not accepts_cardholder_response(status):
        raise InvalidTransition(f"Cannot respond to a {status} finding")
    return CARDHOLDER_TRANSITIONS[response_type]


def auditor_transition(status: str, response_type: str, pending_response_type: str | None) -> AuditorDecision:
    """Decide the outcome of an auditor response.

    ``pending_response_type`` is the type of the cardholder response awaiting
    review, or ``None`` when there is none.
    """
    if response_type not in AUDITOR_OUTCOMES:
        raise InvalidTransition(f"Unknown auditor response type: {response_type}")
    if status == RESOLVED:
        raise InvalidTransition("Finding already resolved")
    cardholder_status, auditor_status = AUDITOR_OUTCOMES[response_type]

    if response_type == "escalate":
        return AuditorDecision(DISPUTED, cardholder_status, auditor_status)
    if pending_response_type is None:
        raise InvalidTransition(f"No cardholder response awaiting review for '{response_type}'")
    if status == DISPUTED:
        if response_type != "accept":
            raise InvalidTransition(f"Cannot '{response_type}' a disputed finding")
        return AuditorDecision(DISPUTED, cardholder_status, auditor_status)
    if response_type == "reject":
        return AuditorDecision(OPEN, cardholder_status, auditor_status)
    if response_type == "request_more_info":
        return AuditorDecision(IN_PROGRESS, cardholder_status, auditor_status)

    # accept
    if pending_response_type == "resolve":
        return AuditorDecision(RESOLVED, cardholder_status, auditor_status)
    if pending_response_type == "dispute":
        return AuditorDecision(DISPUTED, cardholder_status, auditor_status)
    return AuditorDecision(
        IN_PROGRESS,
        cardholder_status,
        auditor_status,
        extend_due_date=pending_response_type == "request_extension",
    )
