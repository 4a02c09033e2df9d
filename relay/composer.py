"""Notification composer — pure formatting of operator messages.

No network and no state: given a submission it returns the message text and,
for steps that need a verdict, the inline approve/reject keyboard.
"""

from datetime import datetime
from typing import Any, NamedTuple, Optional
from zoneinfo import ZoneInfo

from config import DISPLAY_TIMEZONE
from relay.payload import ACTION_FAIL, ACTION_OK, encode_decision
from relay.steps import RESEND_STEP, VERBATIM_STEPS, label_for, requires_decision

APPROVE_TEXT = "✅ Correct"
REJECT_TEXT = "❌ Incorrect"
UNKNOWN_ORIGIN = "Unknown"


class Notification(NamedTuple):
    text: str
    reply_markup: Optional[dict[str, Any]] = None


def decision_keyboard(user_id: str, step: str) -> dict[str, Any]:
    """Single row with the approve / reject buttons for (user_id, step)."""
    return {
        "inline_keyboard": [[
            {"text": APPROVE_TEXT, "callback_data": encode_decision(user_id, step, ACTION_OK)},
            {"text": REJECT_TEXT, "callback_data": encode_decision(user_id, step, ACTION_FAIL)},
        ]]
    }


def _header(user_id: str, origin: str, address: str) -> str:
    return (
        f"📍 Source: {origin or UNKNOWN_ORIGIN}\n"
        f"👤 User #{user_id}\n"
        f"🌐 IP: {address}\n"
    )


def compose_step(
    user_id: str,
    step: str,
    value: str,
    origin: str,
    address: str,
    decision_required: bool,
) -> Notification:
    """Build the operator message for one submitted step."""
    header = _header(user_id, origin, address)

    if step == RESEND_STEP:
        text = f"🔄 User #{user_id} pressed «Send again»\n{header}".rstrip("\n")
        return Notification(text)

    if step in VERBATIM_STEPS:
        text = f"{header}📄 {value}"
    else:
        text = f"{header}📄 {label_for(step)}: {value}"

    if decision_required and requires_decision(step):
        return Notification(text, decision_keyboard(user_id, step))
    return Notification(text)


def format_local_time(when: datetime, tz_name: str = DISPLAY_TIMEZONE) -> str:
    """DD.MM.YYYY, HH:MM:SS in the operator's timezone."""
    if when.tzinfo is None:
        when = when.astimezone()
    return when.astimezone(ZoneInfo(tz_name)).strftime("%d.%m.%Y, %H:%M:%S")


def compose_visit(user_id: str, address: str, when: Optional[datetime] = None) -> Notification:
    """Notice sent when a client opens the login form."""
    stamp = format_local_time(when or datetime.now().astimezone())
    return Notification(
        f"🆕 User #{user_id} (IP: {address}) opened the login form\n"
        f"Time: {stamp}"
    )
