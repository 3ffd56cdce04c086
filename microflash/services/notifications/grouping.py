"""
Reminder Grouping

Batches due cards into one reminder per user, nested by deck, with a
human-readable summary. Every due card of a user with a push token ends up
in that user's group; users without a token are dropped.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

NOTIFICATION_CATEGORY_ID = "due_cards"
SINGLE_CARD_TITLE = "Time to review!"
MULTI_CARD_TITLE = "Cards ready for review!"


@dataclass(frozen=True)
class DueCard:
    """A due card joined with the deck and user data grouping needs."""

    card_id: int
    deck_id: int
    deck_title: str
    user_id: str
    push_token: Optional[str]
    parent_deck_id: Optional[int] = None


@dataclass
class DeckCardGroup:
    deck_id: int
    deck_title: str
    parent_deck_id: Optional[int] = None
    card_ids: list[int] = field(default_factory=list)

    @property
    def card_count(self) -> int:
        return len(self.card_ids)


@dataclass
class UserNotificationGroup:
    """All of one user's due cards, in first-seen deck order."""

    user_id: str
    push_token: str
    decks: list[DeckCardGroup] = field(default_factory=list)

    @property
    def total_cards(self) -> int:
        return sum(deck.card_count for deck in self.decks)

    @property
    def card_ids(self) -> list[int]:
        return [card_id for deck in self.decks for card_id in deck.card_ids]

    @property
    def deck_ids(self) -> list[int]:
        return [deck.deck_id for deck in self.decks]


def group_due_cards(due_cards: list[DueCard]) -> list[UserNotificationGroup]:
    """
    Group due cards by user, then by deck.

    Users appear in first-seen order. Users without a push token are
    dropped entirely.
    """
    groups: dict[str, UserNotificationGroup] = {}
    decks: dict[tuple[str, int], DeckCardGroup] = {}
    skipped: set[str] = set()

    for due in due_cards:
        if not due.push_token:
            skipped.add(due.user_id)
            continue

        group = groups.get(due.user_id)
        if group is None:
            group = groups[due.user_id] = UserNotificationGroup(
                user_id=due.user_id, push_token=due.push_token
            )

        deck = decks.get((due.user_id, due.deck_id))
        if deck is None:
            deck = decks[(due.user_id, due.deck_id)] = DeckCardGroup(
                deck_id=due.deck_id,
                deck_title=due.deck_title,
                parent_deck_id=due.parent_deck_id,
            )
            group.decks.append(deck)

        if due.card_id not in deck.card_ids:
            deck.card_ids.append(due.card_id)

    return list(groups.values())


def notification_title(card_count: int) -> str:
    return SINGLE_CARD_TITLE if card_count == 1 else MULTI_CARD_TITLE


def notification_body(group: UserNotificationGroup) -> str:
    """
    Summary text.

    One deck:   "3 due in Spanish"
    Several:    "5 due: 3 in Spanish, 2 in Math" (largest deck first, ties by title)
    """
    if not group.decks:
        return ""
    if len(group.decks) == 1:
        deck = group.decks[0]
        return f"{deck.card_count} due in {deck.deck_title}"

    ordered = sorted(group.decks, key=lambda d: (-d.card_count, d.deck_title))
    parts = ", ".join(f"{d.card_count} in {d.deck_title}" for d in ordered)
    return f"{group.total_cards} due: {parts}"


def prepare_notification_payload(group: UserNotificationGroup) -> dict[str, Any]:
    """Title, body, category and deep-link data for one user's reminder."""
    card_ids = group.card_ids
    return {
        "title": notification_title(group.total_cards),
        "body": notification_body(group),
        "category_id": NOTIFICATION_CATEGORY_ID,
        "data": {
            "type": NOTIFICATION_CATEGORY_ID,
            "card_ids": card_ids,
            "deck_ids": group.deck_ids,
            "total_cards": len(card_ids),
            "url": f"/review-session?cardIds={','.join(str(c) for c in card_ids)}",
        },
    }
