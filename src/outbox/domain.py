"""Outbox bounded context — durable, change-feed driven notification delivery.

Notification intents are written to the outbox (QueueEntry aggregate) and
delivered asynchronously via email or SMS providers. Failed deliveries are
escalated to a bounded secondary retry path before being marked as
permanently failed.
"""

from protean.domain import Domain

from outbox.config import get_settings
from outbox.utils.logging import configure_logging, get_logger

# Configure logging for the application
configure_logging(get_settings().log_dir)

# Get logger for this module
logger = get_logger(__name__)

# Domain Composition Root
outbox = Domain(name="outbox")
