"""
Reminder services: eligibility rules, grouping, delivery and the tick
orchestrator.

The orchestrator is imported from its module directly:
    from microflash.services.notifications.orchestrator import NotificationOrchestrator
"""

from microflash.services.notifications.delivery import (
    DeliveryMessage,
    DeliveryResult,
    DeliveryTransport,
    ExpoPushTransport,
    is_valid_push_token,
)
from microflash.services.notifications.eligibility import (
    EligibilityService,
    evaluate,
    record_push_sent,
)
from microflash.services.notifications.grouping import (
    DueCard,
    UserNotificationGroup,
    group_due_cards,
    prepare_notification_payload,
)
__all__ = [
    "DeliveryMessage",
    "DeliveryResult",
    "DeliveryTransport",
    "DueCard",
    "EligibilityService",
    "ExpoPushTransport",
    "UserNotificationGroup",
    "evaluate",
    "group_due_cards",
    "is_valid_push_token",
    "prepare_notification_payload",
    "record_push_sent",
]
