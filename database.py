"""
database.py
Canonical card database (hocg_cards.json).

One CardDatabase holds every Card by card number. Workers share it:
  - reads (get, iteration) take no lock
  - every read → decide → write unit runs inside `with db.transaction():`
    which holds one global re-entrant lock

Cards are created on first observation and never deleted. A manage_id
belongs to at most one illustration per language in the whole database;
assign_manage_id() strips it from the previous holder first.
"""

import json
import logging
import threading
from contextlib import contextmanager

from config import LANGUAGES
from models import Card

logger = logging.getLogger("database")


class CardDatabase:
    def __init__(self, cards=None):
        self._cards = {}
        self._lock = threading.RLock()
        for card in cards or []:
            self._cards[card.card_number] = card

    # ─────────────────────────────────────────────────────────────
    # Locking
    # ─────────────────────────────────────────────────────────────

    @contextmanager
    def transaction(self):
        """Exclusive section for one read-decide-write unit."""
        with self._lock:
            yield self

    # ─────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────

    def get(self, card_number):
        return self._cards.get(card_number)

    def get_or_create(self, card_number):
        with self._lock:
            card = self._cards.get(card_number)
            if card is None:
                card = Card(card_number=card_number)
                self._cards[card_number] = card
                logger.debug(f"New card {card_number}")
            return card

    def __contains__(self, card_number):
        return card_number in self._cards

    def __len__(self):
        return len(self._cards)

    def __iter__(self):
        # snapshot, so writers can add cards while we iterate
        return iter(sorted(list(self._cards.values()), key=lambda c: c.card_number))

    def card_numbers(self):
        return sorted(self._cards)

    def illustrations(self):
        """All (card, illustration) pairs."""
        for card in self:
            for illust in list(card.illustrations):
                yield card, illust

    def find_by_manage_id(self, language, manage_id):
        for card, illust in self.illustrations():
            if illust.has_manage_id(language, manage_id):
                return card, illust
        return None, None

    # ─────────────────────────────────────────────────────────────
    # Identifier invariant
    # ─────────────────────────────────────────────────────────────

    def assign_manage_id(self, card, illust, language, manage_id):
        """
        Give `manage_id` to `illust`, removing it from any other illustration.

        Returns the list of (card_number, label) that lost the id.
        """
        stripped = []
        with self._lock:
            for other_card, other in self.illustrations():
                if other is illust or not other.has_manage_id(language, manage_id):
                    continue
                stripped.append((other_card.card_number, other.label()))
                other.remove_manage_id(language, manage_id)
                logger.info(f"Moved {language.upper()}-{manage_id} from "
                            f"{other_card.card_number} to {card.card_number}")
                if other_card is not card:
                    other_card.sort_illustrations()
            illust.add_manage_id(language, manage_id)
            card.sort_illustrations()
        return stripped

    def identifier_conflicts(self):
        """(language, manage_id, [card_number, ...]) held by more than one illustration."""
        holders = {}
        for card, illust in self.illustrations():
            for lang in LANGUAGES:
                for manage_id in illust.manage_ids(lang):
                    holders.setdefault((lang, manage_id), []).append(card.card_number)
        return [(lang, mid, numbers) for (lang, mid), numbers in sorted(holders.items())
                if len(numbers) > 1]

    # ─────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────

    def to_list(self):
        return [card.to_dict() for card in self]

    @classmethod
    def from_list(cls, data):
        return cls(Card.from_dict(entry) for entry in data)

    @classmethod
    def load(cls, path):
        """Load hocg_cards.json, or an empty database when missing."""
        if not path.exists():
            logger.info(f"No database at {path}, starting empty")
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        db = cls.from_list(data)
        logger.info(f"Loaded {len(db)} cards from {path}")
        return db

    def save(self, path):
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            data = self.to_list()
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.write("\n")
        tmp.replace(path)
        logger.info(f"Saved {len(data)} cards to {path}")
