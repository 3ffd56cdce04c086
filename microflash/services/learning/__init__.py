"""
Learning services: FSRS scheduling, card selection, decks/cards and sprints.

Usage:
    from microflash.services.learning import SprintService, SpacedRepService
"""

from microflash.services.learning.card_selector import CardSelector, order_cards, sort_key
from microflash.services.learning.fsrs import (
    FSRSScheduler,
    MemoryState,
    ScheduleResult,
    compute_next,
    create_scheduler,
    get_review_forecast,
    parse_rating,
)
from microflash.services.learning.spaced_rep_service import SpacedRepService
from microflash.services.learning.sprint_service import SprintService

__all__ = [
    "CardSelector",
    "FSRSScheduler",
    "MemoryState",
    "ScheduleResult",
    "SpacedRepService",
    "SprintService",
    "compute_next",
    "create_scheduler",
    "get_review_forecast",
    "order_cards",
    "parse_rating",
    "sort_key",
]
