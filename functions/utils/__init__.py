# utils/__init__.py

from .errors import (
    CrashResponseError,
    ConfigurationError,
    ValidationError,
    NotFound,
    ResolutionFailure,
    UnhandledFailure,
    DispatchFailure
)
from .geo_utils import (
    Coordinate,
    Facility,
    ResolutionResult,
    haversine_distance,
    find_nearest_facility,
    load_facilities
)
from .recipient_utils import RecipientResolver
from .notification_utils import (
    NotificationMessage,
    DispatchReport,
    NotificationDispatcher,
    send_single_notification
)

__all__ = [
    # Errors
    'CrashResponseError',
    'ConfigurationError',
    'ValidationError',
    'NotFound',
    'ResolutionFailure',
    'UnhandledFailure',
    'DispatchFailure',

    # Nearest facility
    'Coordinate',
    'Facility',
    'ResolutionResult',
    'haversine_distance',
    'find_nearest_facility',
    'load_facilities',

    # Recipients and fanout
    'RecipientResolver',
    'NotificationMessage',
    'DispatchReport',
    'NotificationDispatcher',
    'send_single_notification'
]
