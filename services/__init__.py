"""Service layer package for the 3x-ui account bot."""

from .approval_service import (
    AutoApprovalJob,
    ExtensionWorkflow,
    InvalidStateError,
    RegistrationWorkflow,
    RequestPendingError,
    UnlimitedSubscriptionError,
    ValidationError,
    WorkflowError,
)
from .callback_registry import CallbackRegistry
from .client_service import ClientService, CopyResult
from .forecast_service import AGGREGATE, ForecastService, InsufficientDataError, ThresholdAlarm
from .identity_sync import IdentitySyncEngine, SyncReport
from .notification_service import NotificationService
from .subscription_service import SubscriptionService

__all__ = [
    'AutoApprovalJob',
    'ExtensionWorkflow',
    'RegistrationWorkflow',
    'WorkflowError',
    'ValidationError',
    'RequestPendingError',
    'UnlimitedSubscriptionError',
    'InvalidStateError',
    'CallbackRegistry',
    'ClientService',
    'CopyResult',
    'AGGREGATE',
    'ForecastService',
    'InsufficientDataError',
    'ThresholdAlarm',
    'IdentitySyncEngine',
    'SyncReport',
    'NotificationService',
    'SubscriptionService',
]
