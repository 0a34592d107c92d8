"""Stepper error taxonomy.

Business-state errors (permission, lock, sequence, transition) are raised
before any mutation and leave the status store untouched. Persistence
errors are raised after an attempted commit. Notification errors are only
ever logged by the dispatcher.
"""

from __future__ import annotations

from typing import Any

from fulfillment_stepper.core.domain.reject_reasons import RejectReason


class StepperError(Exception):
    """Root of all stepper errors.

    ``reason`` is a RejectReason constant; ``context`` carries the structured
    fields that are also passed to logging ``extra``.
    """

    default_reason: str = "stepper_error"

    def __init__(self, reason: str | None = None, message: str | None = None, **context: Any) -> None:
        self.reason = reason or self.default_reason
        self.context = context
        super().__init__(message or self._format_default())

    def _format_default(self) -> str:
        details = ", ".join(f"{k}={v}" for k, v in self.context.items() if v is not None)
        return f"{self.reason} ({details})" if details else self.reason


class PermissionDenied(StepperError):
    """The acting role may not open or act on the requested stage."""

    default_reason = RejectReason.ROLE_NOT_PERMITTED

    def __init__(
        self,
        *,
        role: str | None = None,
        stage_id: str | None = None,
        reason: str | None = None,
        message: str | None = None,
        **context: Any,
    ) -> None:
        self.role = role
        self.stage_id = stage_id
        super().__init__(reason, message, role=role, stage_id=stage_id, **context)


class StageLocked(PermissionDenied):
    """The stage decisions were committed and only an admin may alter them."""

    default_reason = RejectReason.STAGE_LOCKED

    def __init__(
        self,
        *,
        stage_id: str,
        locked_by: str | None = None,
        product_key: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.locked_by = locked_by
        self.product_key = product_key
        super().__init__(
            stage_id=stage_id,
            reason=reason,
            locked_by=locked_by,
            product_key=product_key,
        )


class SequenceViolation(StepperError):
    """A ranked stage was activated out of order.

    ``kind`` distinguishes a stage that is already behind the current one
    ("already_past") from one that skips a stage ("too_far_ahead").
    """

    def __init__(self, *, target_stage: str, target_rank: int, current_rank: int, kind: str) -> None:
        self.target_stage = target_stage
        self.target_rank = target_rank
        self.current_rank = current_rank
        self.kind = kind

        if kind == RejectReason.ALREADY_PAST:
            message = (
                f"cannot regress: {target_stage} (#{target_rank}) is not after "
                f"the current stage #{current_rank}"
            )
        else:
            message = (
                f"must proceed in order: {target_stage} (#{target_rank}) skips ahead of "
                f"the current stage #{current_rank}"
            )

        super().__init__(
            kind,
            message,
            target_stage=target_stage,
            target_rank=target_rank,
            current_rank=current_rank,
        )


class RoleResolutionError(StepperError):
    """The acting user cannot be classified; no stage interaction is possible."""

    def __init__(self, *, user_id: str, reason: str | None = None, message: str | None = None) -> None:
        self.user_id = user_id
        super().__init__(reason, message, user_id=user_id)


class RoleConflict(RoleResolutionError):
    default_reason = RejectReason.ROLE_CONFLICT

    def __init__(self, *, user_id: str) -> None:
        super().__init__(
            user_id=user_id,
            message=f"user {user_id} is both buyer and seller on the same orders",
        )


class RoleUnresolved(RoleResolutionError):
    default_reason = RejectReason.ROLE_UNRESOLVED

    def __init__(self, *, user_id: str) -> None:
        super().__init__(user_id=user_id, message=f"no role found for user {user_id}")


class InvalidTransition(StepperError):
    """An item status edge that does not exist in the item state machine."""

    default_reason = RejectReason.INVALID_TRANSITION


class ConfirmationRequired(StepperError):
    """A destructive review edit needs explicit confirmation before saving."""

    default_reason = RejectReason.CONFIRMATION_REQUIRED

    def __init__(self, *, product_keys: list[str]) -> None:
        self.product_keys = list(product_keys)
        super().__init__(product_keys=",".join(self.product_keys))


class PersistenceFailure(StepperError):
    """A commit to the status or lock store failed; nothing was advanced."""

    default_reason = RejectReason.PERSISTENCE_FAILED

    def __init__(self, message: str, *, operation: str, retryable: bool = True) -> None:
        self.operation = operation
        self.retryable = retryable
        super().__init__(None, message, operation=operation)


class NotificationFailure(StepperError):
    """Delivery to one recipient group failed (best-effort, never raised to callers)."""

    default_reason = RejectReason.NOTIFICATION_FAILED

    def __init__(self, *, stage_id: str, role: str, cause: BaseException) -> None:
        self.stage_id = stage_id
        self.role = role
        self.cause = cause
        super().__init__(None, f"notification to {role} for {stage_id} failed: {cause!r}", stage_id=stage_id, role=role)
