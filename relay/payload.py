"""Decision payload carried in an inline button's callback_data.

Wire format is three colon-separated tokens: ``user_id:step:action`` with
``action`` being ``ok`` (approve) or ``fail`` (reject).
"""

from typing import NamedTuple, Optional

ACTION_OK = "ok"
ACTION_FAIL = "fail"
ACTIONS = (ACTION_OK, ACTION_FAIL)

# Telegram rejects callback_data longer than 64 bytes.
MAX_CALLBACK_BYTES = 64


class DecisionPayload(NamedTuple):
    user_id: str
    step: str
    action: str

    @property
    def approved(self) -> bool:
        return self.action == ACTION_OK


def encode_decision(user_id: str, step: str, action: str) -> str:
    """Build the callback_data token string for one button."""
    if action not in ACTIONS:
        raise ValueError(f"Unknown decision action: {action!r}")
    if not user_id or not step or ":" in user_id or ":" in step:
        raise ValueError(f"Cannot encode decision for user={user_id!r} step={step!r}")

    data = f"{user_id}:{step}:{action}"
    if len(data.encode("utf-8")) > MAX_CALLBACK_BYTES:
        raise ValueError(f"callback_data exceeds {MAX_CALLBACK_BYTES} bytes: {data!r}")
    return data


def decode_decision(data: Optional[str]) -> Optional[DecisionPayload]:
    """Parse callback_data; returns None for anything that is not a decision."""
    if not data or not isinstance(data, str):
        return None

    parts = data.split(":")
    if len(parts) != 3:
        return None

    user_id, step, action = parts
    if not user_id or not step or action not in ACTIONS:
        return None
    return DecisionPayload(user_id, step, action)
