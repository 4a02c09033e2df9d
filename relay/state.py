"""Relay data model — status values, user records and step submissions."""

import time
from dataclasses import dataclass
from typing import Dict, Literal, Optional, TypedDict


# ── Approval status values ──────────────────────────────────────────────
StatusValue = Literal["none", "pending", "approved", "rejected"]

NONE: StatusValue = "none"
PENDING: StatusValue = "pending"
APPROVED: StatusValue = "approved"
REJECTED: StatusValue = "rejected"


class StatusEntry(TypedDict):
    """One (user_id, step) approval state with its last-updated timestamp."""

    status: StatusValue
    updated_at: float


class UserRecord(TypedDict):
    """Directory record for a single client, keyed by user_id."""

    user_id: str
    address: str
    created_at: float
    last_seen: float
    step_values: Dict[str, str]             # {step: latest value}
    step_statuses: Dict[str, StatusEntry]   # {step: entry}; durable mode only


def new_user_record(user_id: str, address: str, now: Optional[float] = None) -> UserRecord:
    """Factory — returns a fresh record with no submitted steps."""
    ts = time.time() if now is None else now
    return UserRecord(
        user_id=user_id,
        address=address,
        created_at=ts,
        last_seen=ts,
        step_values={},
        step_statuses={},
    )


@dataclass
class StepSubmission:
    """A single step submitted by the client, as received by the HTTP layer."""

    user_id: str
    step: str
    value: str = ""
    origin: str = ""
    address: str = ""


@dataclass(frozen=True)
class SubmissionResult:
    ok: bool = True
    wait_for_validation: bool = False

    def to_response(self) -> dict:
        body = {"ok": self.ok}
        if self.wait_for_validation:
            body["waitForValidation"] = True
        return body
