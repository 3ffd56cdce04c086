"""
Notification Enums

Reasons a user may not receive a reminder right now, and how a delivery
failure should be treated.
"""

from enum import Enum


class IneligibilityReason(str, Enum):
    """
    Why a user is currently ineligible for a reminder push.

    Rules are evaluated in declaration order; the first failing rule wins.
    """

    NOT_ENABLED = "NOT_ENABLED"
    NO_TOKEN = "NO_TOKEN"
    SESSION_CONFLICT = "SESSION_CONFLICT"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    CAP_REACHED = "CAP_REACHED"


class DeliveryErrorKind(str, Enum):
    """
    Classification of a failed push delivery.

    PERMANENT failures mean the token is dead and must be dropped.
    TRANSIENT failures are retried by the next scheduled tick.
    """

    PERMANENT = "permanent"
    TRANSIENT = "transient"
