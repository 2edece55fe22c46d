"""
overrides.py
Hand-maintained fixes for known upstream data errors.

Applied after everything else (observations and merged cards), never inside
matching or merging. Each entry overrides exactly one field of one card.
"""

import logging

from config import ENGLISH
from models import Localized

logger = logging.getLogger("overrides")

# Deck Log manage_id → correct card number
CARD_NUMBER_FIXES = {
    532: "hSD06-001",
}

# Card number → English extra text missing from the sheet
EXTRA_FIXES = {
    "hSD09-003": "If this holomem is downed, you get Life-2",
    "hBP05-029": "If this holomem is downed, you get Life-2",
    "hBP05-039": "If this holomem is downed, you get Life-2",
    "hSD10-010": "This holomem cannot Bloom",
}


def fix_observation(obs):
    """Correct the card number of an observation carrying a manage_id, in place."""
    fixed = CARD_NUMBER_FIXES.get(obs.manage_id)
    if fixed and fixed != obs.card_number:
        logger.info(f"Card number fix: {obs.manage_id} {obs.card_number} -> {fixed}")
        obs.card_number = fixed
    return obs


def apply_overrides(db):
    """
    Apply every field override to the database.

    Returns the number of cards changed.
    """
    changed = 0
    with db.transaction():
        for card_number, text in sorted(EXTRA_FIXES.items()):
            card = db.get(card_number)
            if card is None:
                continue
            if not isinstance(card.extra, Localized):
                card.extra = Localized()
            if card.extra.value(ENGLISH) != text:
                card.extra.set(ENGLISH, text)
                changed += 1
    if changed:
        logger.info(f"{changed} overrides applied")
    return changed
