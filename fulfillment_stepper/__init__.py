"""Public API for the fulfillment_stepper package.

Only symbols imported here are considered part of the stable,
supported external interface.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ----------------------------------------------------------------------
# Configuration
# ----------------------------------------------------------------------
from fulfillment_stepper.core.config.stepper_config import StepDefinition, StepperConfig

# ----------------------------------------------------------------------
# Domain
# ----------------------------------------------------------------------
from fulfillment_stepper.core.domain.errors import (
    ConfirmationRequired,
    InvalidTransition,
    NotificationFailure,
    PermissionDenied,
    PersistenceFailure,
    RoleConflict,
    RoleResolutionError,
    RoleUnresolved,
    SequenceViolation,
    StageLocked,
    StepperError,
)
from fulfillment_stepper.core.domain.permissions import PERMISSIONS, is_step_allowed_for_current_user
from fulfillment_stepper.core.domain.reject_reasons import RejectReason
from fulfillment_stepper.core.domain.roles import resolve_role
from fulfillment_stepper.core.domain.sequencer import check_activation, infer_current_stage
from fulfillment_stepper.core.domain.types import (
    ConfirmationDecision,
    CurrentStageMarker,
    DeliveryDecision,
    LockRecord,
    Order,
    OrderItem,
    ReviewDecision,
    ShippingDecision,
    StageDecision,
)

# ----------------------------------------------------------------------
# Ports and stores
# ----------------------------------------------------------------------
from fulfillment_stepper.core.ports.notifications import MessageSender, NotificationPolicy, TokenDirectory
from fulfillment_stepper.core.ports.status_store import StageCommit, StatusStore
from fulfillment_stepper.store.json_file_store import JsonFileStatusStore
from fulfillment_stepper.store.memory_store import InMemoryStatusStore

# ----------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------
from fulfillment_stepper.notifications.dispatcher import (
    NotificationDispatcher,
    NotificationReport,
    StepNotification,
)
from fulfillment_stepper.notifications.policy import ConfigNotificationPolicy, NotificationConfig
from fulfillment_stepper.notifications.templates import MessageTemplates

# ----------------------------------------------------------------------
# Session facade
# ----------------------------------------------------------------------
from fulfillment_stepper.recorders.base import SaveOutcome
from fulfillment_stepper.session import StageView, StepperSession

# ----------------------------------------------------------------------
# Public API definition
# ----------------------------------------------------------------------

__all__ = [
    # Session
    "StepperSession",
    "StageView",
    "SaveOutcome",

    # Config
    "StepperConfig",
    "StepDefinition",
    "NotificationConfig",
    "ConfigNotificationPolicy",
    "MessageTemplates",

    # Domain
    "Order",
    "OrderItem",
    "StageDecision",
    "ReviewDecision",
    "ConfirmationDecision",
    "ShippingDecision",
    "DeliveryDecision",
    "LockRecord",
    "CurrentStageMarker",
    "PERMISSIONS",
    "is_step_allowed_for_current_user",
    "resolve_role",
    "check_activation",
    "infer_current_stage",
    "RejectReason",

    # Errors
    "StepperError",
    "PermissionDenied",
    "StageLocked",
    "SequenceViolation",
    "RoleResolutionError",
    "RoleConflict",
    "RoleUnresolved",
    "InvalidTransition",
    "ConfirmationRequired",
    "PersistenceFailure",
    "NotificationFailure",

    # Ports and stores
    "StatusStore",
    "StageCommit",
    "InMemoryStatusStore",
    "JsonFileStatusStore",
    "NotificationPolicy",
    "TokenDirectory",
    "MessageSender",

    # Notifications
    "NotificationDispatcher",
    "NotificationReport",
    "StepNotification",

    # Version
    "__version__",
]

# ----------------------------------------------------------------------
# Package version
# ----------------------------------------------------------------------

try:
    __version__ = version("fulfillment-stepper")
except PackageNotFoundError:
    __version__ = "0.0.0"
