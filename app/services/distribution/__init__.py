"""Content distribution to social channels.

The service module is imported directly (``app.services.distribution.service``)
since it depends on the record stores, which depend on these models.
"""

from app.services.distribution.dispatcher import Dispatcher
from app.services.distribution.models import (
    Channel,
    DeliveryError,
    DeliveryErrorKind,
    DistributionRecord,
    DistributionStatus,
    SocialPlatform,
)

__all__ = [
    "Channel",
    "DeliveryError",
    "DeliveryErrorKind",
    "Dispatcher",
    "DistributionRecord",
    "DistributionStatus",
    "SocialPlatform",
]
