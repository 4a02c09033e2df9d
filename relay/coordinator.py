"""Submission coordinator — the unit the HTTP layer calls.

Orchestration only: identity, status and delivery each live in their own
component. Notification failures never reach the caller.
"""

import logging
from typing import Optional

from notify.transport import NotificationTransport
from relay.composer import compose_step, compose_visit
from relay.state import StatusValue, StepSubmission, SubmissionResult
from relay.steps import RESEND_STEP, is_blocking, requires_decision
from stores.directory import UserDirectory
from stores.identity import IdentityResolver, normalize_address
from stores.status_store import StatusStore

logger = logging.getLogger(__name__)


class SubmissionCoordinator:
    def __init__(
        self,
        identity: IdentityResolver,
        directory: UserDirectory,
        status_store: StatusStore,
        transport: NotificationTransport,
        blocking_steps: Optional[frozenset[str]] = None,
    ):
        self.identity = identity
        self.directory = directory
        self.status_store = status_store
        self.transport = transport
        self.blocking_steps = blocking_steps

    def record_visit(self, address: str) -> str:
        """Resolve the visitor and tell the operator (fire-and-forget)."""
        user_id = self.identity.resolve(address)
        self.transport.dispatch(compose_visit(user_id, normalize_address(address)))
        return user_id

    async def submit(self, submission: StepSubmission) -> SubmissionResult:
        user_id, step = submission.user_id, submission.step
        address = normalize_address(submission.address)

        try:
            self.directory.ensure_user(user_id, address)
            self.directory.record_step_value(user_id, step, submission.value)
        except Exception:
            logger.exception("Could not record step %s for user %s", step, user_id)

        if step == RESEND_STEP:
            notification = compose_step(user_id, step, submission.value, submission.origin, address, False)
            await self.transport.send(notification)
            return SubmissionResult()

        decision = requires_decision(step)
        try:
            notification = compose_step(user_id, step, submission.value, submission.origin, address, decision)
        except ValueError as e:
            # user_id/step cannot be carried in callback_data, so nobody can decide it
            logger.warning("No decision buttons for step %s of user %s: %s", step, user_id, e)
            decision = False
            notification = compose_step(user_id, step, submission.value, submission.origin, address, False)

        if decision:
            self.status_store.set_pending(user_id, step)

        if not await self.transport.send(notification):
            logger.warning("Operator was not notified about step %s of user %s", step, user_id)

        return SubmissionResult(wait_for_validation=decision and is_blocking(step, self.blocking_steps))

    def status(self, user_id: str, step: str) -> StatusValue:
        return self.status_store.get(user_id, step)
