"""
merger.py
Merge one source's view of a card (CardObservation) into the canonical Card.

Precedence:
  - scalar fields (type, colors, bloom level, life/hp, buzz, limited, ...)
    are written when still UNSET or while the card is unreleased, otherwise
    a mismatch is reported and the existing value is kept
  - localized text: the primary language (Japanese) follows the same rule,
    other languages are always refreshed
  - collections (oshi skills, keywords, arts, tags, extra):
      only_text=True   keep structure, overwrite this language's text
                       element by element
      only_text=False  take the new structure, carry the other languages'
                       text over element by element

Mismatches never raise. Each one is logged and returned as a MergeWarning.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Optional

from classify import default_max_amount
from config import ENGLISH, JAPANESE, LANGUAGES, PRIMARY_LANGUAGE
from models import UNSET, Localized, is_unset, sorted_colors

logger = logging.getLogger("merger")

SCALAR_FIELDS = ("card_type", "colors", "life", "hp", "bloom_level",
                 "buzz", "limited", "baton_pass")
COLLECTION_FIELDS = ("oshi_skills", "keywords", "arts", "tags")


class ObservationError(Exception):
    """A source record is missing a required field and can't be merged."""


@dataclass
class MergeWarning:
    card_number: str
    field: str
    observed: object
    kept: object

    def __str__(self):
        return f"[{self.card_number}] {self.field}: observed {self.observed!r}, kept {self.kept!r}"


@dataclass
class CardObservation:
    """
    What one source says about one card, in one language.

    UNSET means the source doesn't report the field. Text fields hold the
    text in `language` only; collection elements are model objects whose
    Localized text is filled for `language`.
    """
    card_number: str
    language: str = JAPANESE
    name: Optional[str] = None
    ability_text: Optional[str] = None
    card_type: object = UNSET
    colors: object = UNSET
    life: object = UNSET
    hp: object = UNSET
    bloom_level: object = UNSET
    buzz: object = UNSET
    limited: object = UNSET
    baton_pass: object = UNSET
    tags: object = UNSET
    oshi_skills: object = UNSET
    keywords: object = UNSET
    arts: object = UNSET
    extra: object = UNSET        # Localized, None (observed: no extra) or UNSET
    max_amount: object = UNSET   # int

    def validate(self):
        if not self.card_number or not self.card_number.strip():
            raise ObservationError("missing card number")
        if self.language not in LANGUAGES:
            raise ObservationError(f"unknown language {self.language!r}")


def mismatch(card_number, field_name, observed, kept):
    """Log a mismatch and return it as a MergeWarning."""
    w = MergeWarning(card_number, field_name, observed, kept)
    logger.warning(str(w))
    return w


class _Collector:
    """Collects warnings for one card."""

    def __init__(self, card_number):
        self.card_number = card_number
        self.warnings = []

    def warn(self, field_name, observed, kept):
        self.warnings.append(mismatch(self.card_number, field_name, observed, kept))


def _comparable(field_name, value):
    if field_name in ("colors", "baton_pass") and isinstance(value, list):
        return sorted_colors(value)
    return value


# ============================================
# Collections
# ============================================

def merge_collection(old, new, language, only_text, field_name, out):
    """
    Merge one list of text-bearing elements (OshiSkill, Keyword, Art, Localized).

    Returns the list to store on the card.
    """
    if len(old) != len(new):
        out.warn(f"{field_name} count", len(new), len(old))

    if only_text:
        for i, (old_el, new_el) in enumerate(zip(old, new)):
            if old_el.structure() != new_el.structure():
                out.warn(f"{field_name}[{i}]", new_el.structure(), old_el.structure())
            old_el.copy_text(new_el, language)
        return old

    new = copy.deepcopy(new)
    other_languages = [lang for lang in LANGUAGES if lang != language]
    for i, (old_el, new_el) in enumerate(zip(old, new)):
        if old_el.structure() != new_el.structure():
            out.warn(f"{field_name}[{i}]", new_el.structure(), old_el.structure())
        for lang in other_languages:
            new_el.copy_text(old_el, lang)
    return new


def _merge_collection_field(card, obs, field_name, only_text, out):
    new = getattr(obs, field_name)
    if is_unset(new):
        return
    old = getattr(card, field_name)
    if is_unset(old):
        setattr(card, field_name, copy.deepcopy(new))
        return
    setattr(card, field_name,
            merge_collection(old, new, obs.language, only_text, field_name, out))


def _merge_extra(card, obs, only_text, out):
    if is_unset(obs.extra):
        return
    if is_unset(card.extra):
        card.extra = copy.deepcopy(obs.extra)
        return
    old = [card.extra] if card.extra is not None else []
    new = [obs.extra] if obs.extra is not None else []
    merged = merge_collection(old, new, obs.language, only_text, "extra", out)
    card.extra = merged[0] if merged else None


# ============================================
# Scalars and text
# ============================================

def _merge_scalar(card, obs, field_name, out):
    new = getattr(obs, field_name)
    if is_unset(new):
        return
    old = getattr(card, field_name)
    if is_unset(old) or not card.released:
        setattr(card, field_name, copy.copy(new))
    elif _comparable(field_name, old) != _comparable(field_name, new):
        out.warn(field_name, new, old)


def _merge_text(card, obs, field_name, out):
    new = getattr(obs, field_name)
    if new is None:
        return
    loc = getattr(card, field_name)
    old = loc.value(obs.language)
    if old == new:
        return
    if obs.language == PRIMARY_LANGUAGE and old and card.released:
        out.warn(f"{field_name}.{obs.language}", new, old)
        return
    loc.set(obs.language, new)


def _merge_max_amount(card, obs, out):
    lang = obs.language
    if not is_unset(obs.max_amount):
        old = card.max_amount.value(lang)
        if old is None or not card.released:
            card.max_amount.set(lang, obs.max_amount)
        elif old != obs.max_amount:
            out.warn(f"max_amount.{lang}", obs.max_amount, old)

    if is_unset(card.card_type):
        return
    english_extra = card.extra.value(ENGLISH) if isinstance(card.extra, Localized) else None
    default = default_max_amount(card.card_type, english_extra)
    for lang in LANGUAGES:
        if card.max_amount.value(lang) is None:
            card.max_amount.set(lang, default)


# ============================================
# Entry point
# ============================================

def merge_card(card, obs, only_text=False):
    """
    Merge an observation into a card in place.

    Args:
        card: canonical Card (same card number)
        obs: CardObservation
        only_text: keep the card's structure and only refresh text

    Returns:
        list of MergeWarning

    Raises:
        ObservationError: the observation is structurally invalid.
    """
    obs.validate()
    if card.card_number and card.card_number != obs.card_number:
        raise ObservationError(
            f"observation for {obs.card_number} merged into {card.card_number}")
    card.card_number = obs.card_number
    out = _Collector(card.card_number)

    _merge_text(card, obs, "name", out)
    _merge_text(card, obs, "ability_text", out)

    for field_name in SCALAR_FIELDS:
        _merge_scalar(card, obs, field_name, out)

    for field_name in COLLECTION_FIELDS:
        _merge_collection_field(card, obs, field_name, only_text, out)
    _merge_extra(card, obs, only_text, out)

    _merge_max_amount(card, obs, out)
    return out.warnings
