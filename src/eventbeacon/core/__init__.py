from .config import AnalyticsConfig
from .errors import DeliveryError, DropReason, NonRetryableDeliveryError, RetryableDeliveryError
from .tracker import Tracker
from .version import __version__

__all__ = [
    "AnalyticsConfig",
    "DeliveryError",
    "DropReason",
    "NonRetryableDeliveryError",
    "RetryableDeliveryError",
    "Tracker",
    "__version__",
]
