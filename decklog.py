"""
decklog.py
Card list from the Deck Log search API (Japanese).

Fields used: card number, manage_id, card kind, name, rarity, image,
bloom level, max copies.

Usage:
    raw = fetch_all(images.http_session(), keyword="hBP01")
    report, warnings = import_decklog(db, raw)
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor

import requests

from classify import bloom_level_from_text, card_type_from_text, is_buzz, is_limited
from config import (
    DECKLOG_DECK_TYPES,
    DECKLOG_SEARCH_URL,
    DEFAULT_WORKERS,
    JAPANESE,
    RETRY_COUNT,
    RETRY_DELAY,
    TIMEOUT,
)
from images import official_image_url
from merger import CardObservation, ObservationError, merge_card
from models import CardType
from overrides import fix_observation
from reconcile import IllustrationObservation, ReconcileReport, reconcile_batch

logger = logging.getLogger("decklog")


# ============================================
# API
# ============================================

def search_page(session, deck_type, page, keyword="", expansion="", retries=RETRY_COUNT):
    """
    One page of search results.

    Returns a list of raw card dicts (empty past the last page).

    Raises:
        requests.exceptions.RequestException after the last retry.
    """
    body = {
        "param": {
            "deck_param1": "S",
            "deck_type": deck_type,
            "keyword": keyword or "",
            "keyword_type": ["no"],
            "expansion": expansion or "",
        },
        "page": page,
    }
    for attempt in range(retries + 1):
        try:
            resp = session.post(DECKLOG_SEARCH_URL, json=body, timeout=TIMEOUT)
            resp.raise_for_status()
            return resp.json()
        except requests.exceptions.RequestException as e:
            if attempt < retries:
                logger.debug(f"{deck_type} page {page}: {e}, retrying")
                time.sleep(RETRY_DELAY)
                continue
            raise
    return []


def fetch_deck_type(session, deck_type, keyword="", expansion=""):
    cards = []
    page = 1
    while True:
        print(f"  deck type: {deck_type}, page: {page}")
        results = search_page(session, deck_type, page, keyword, expansion)
        if not results:
            break
        cards.extend(results)
        page += 1
    return cards


def fetch_all(session, keyword="", expansion="", workers=len(DECKLOG_DECK_TYPES)):
    """All cards of every deck type (N, OSHI, YELL), in deck type order."""
    if keyword or expansion:
        print(f"Retrieve cards info from Deck Log - number: {keyword or 'all'}, "
              f"expansion: {expansion or 'all'}")
    else:
        print("Retrieve ALL cards info from Deck Log")
    with ThreadPoolExecutor(max_workers=workers) as pool:
        pages = pool.map(lambda t: fetch_deck_type(session, t, keyword, expansion),
                         DECKLOG_DECK_TYPES)
        return [card for cards in pages for card in cards]


# ============================================
# Parsing
# ============================================

def _to_int(value, field_name, required=True):
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ObservationError(f"missing {field_name}")
        return None
    try:
        return int(str(value).strip())
    except ValueError as e:
        raise ObservationError(f"bad {field_name}: {value!r}") from e


def parse_card(raw, optimized_images=False):
    """
    Turn one Deck Log row into (CardObservation, IllustrationObservation).

    Raises:
        ObservationError: required field missing or unparseable.
    """
    card_number = (raw.get("card_number") or "").strip()
    if not card_number:
        raise ObservationError(f"missing card_number in {raw!r}")
    manage_id = _to_int(raw.get("manage_id"), "manage_id", required=False)
    max_amount = _to_int(raw.get("max"), "max")

    card_kind = raw.get("card_kind") or ""
    card_type = card_type_from_text(card_kind) or CardType.OTHER
    if card_type == CardType.OSHI_HOLOMEM:
        max_amount = min(max_amount, 1)

    img = raw.get("img") or ""
    if img and not optimized_images:
        img = img.replace(".png", ".webp")

    illust = IllustrationObservation(
        card_number=card_number,
        language=JAPANESE,
        rarity=(raw.get("rare") or "").strip(),
        manage_id=manage_id,
        img_path=img or None,
        image_url=official_image_url(img) if img else None,
        source="decklog",
    )
    fix_observation(illust)

    card = CardObservation(
        card_number=illust.card_number,
        language=JAPANESE,
        name=raw.get("name") or None,
        card_type=card_type,
        bloom_level=bloom_level_from_text(raw.get("bloom_level") or ""),
        buzz=is_buzz(card_kind),
        limited=is_limited(card_kind),
        max_amount=max_amount,
    )
    return card, illust


# ============================================
# Import
# ============================================

def import_decklog(db, raw_cards, fetch_image=None, workers=DEFAULT_WORKERS,
                   optimized_images=False):
    """
    Merge Deck Log rows into the database and reconcile their illustrations.

    Images are only fetched (for matching) when the manage_id and image path
    are both unknown to the database.

    Returns:
        (ReconcileReport, list of MergeWarning)
    """
    report = ReconcileReport()
    warnings = []
    observations = []

    for raw in raw_cards:
        try:
            card_obs, illust_obs = parse_card(raw, optimized_images)
        except ObservationError as e:
            logger.warning(f"Skipping Deck Log row: {e}")
            report.errors.append((str(raw.get("card_number", "")), str(e)))
            continue

        with db.transaction():
            card = db.get_or_create(card_obs.card_number)
            warnings.extend(merge_card(card, card_obs, only_text=False))

            _, holder = db.find_by_manage_id(JAPANESE, illust_obs.manage_id)
            known_path = any(i.img_path.value(JAPANESE) == illust_obs.img_path
                             for i in card.illustrations)
            if holder is not None or known_path:
                illust_obs.image_url = None
        observations.append(illust_obs)

    report.merge(reconcile_batch(db, observations, fetch_image=fetch_image,
                                 workers=workers))
    print(f"{len(observations)} Deck Log illustrations: {report.summary()}")
    return report, warnings
