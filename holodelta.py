"""
holodelta.py
Link illustrations to holoDelta's art indexes (cardHasArt table).

holoDelta keeps its own per-card list of artworks. For every card number it
knows, the card's illustrations are matched against holoDelta's Japanese arts
by fingerprint; several illustrations may share one art (reprints) when their
distances are within the co-assignment tolerance.

Usage:
    updated = import_holodelta(db, "holodelta/cards.db")
"""

import logging
import sqlite3
from collections import OrderedDict

from config import DIST_TOLERANCE_CO_ASSIGN, DIST_TOLERANCE_DIFF_RARITY
from image_hash import DecodeError, bytes_to_image_hash
from matcher import BY_IMAGE, CandidateMatcher, Query, Target

logger = logging.getLogger("holodelta")

ARTS_QUERY = (
    "SELECT cardID, art_index, lang, art FROM 'cardHasArt' "
    "WHERE lang = 'ja' ORDER BY cardID, art_index"
)


def read_delta_arts(path):
    """
    Read holoDelta's Japanese arts.

    Returns OrderedDict: card_number -> [(art_index, image bytes), ...]
    """
    arts = OrderedDict()
    conn = sqlite3.connect(str(path))
    try:
        for card_id, art_index, _lang, art in conn.execute(ARTS_QUERY):
            arts.setdefault(card_id, []).append((int(art_index), bytes(art)))
    finally:
        conn.close()
    return arts


def delta_matcher():
    return CandidateMatcher(
        same_rarity_tolerance=DIST_TOLERANCE_DIFF_RARITY,
        diff_rarity_tolerance=DIST_TOLERANCE_DIFF_RARITY,
        co_assign_tolerance=DIST_TOLERANCE_CO_ASSIGN,
        check_rarity=False,
        allow_create=False,
    )


def match_card_arts(card, delta_arts, matcher=None):
    """
    Re-resolve delta_art_index for one card. Caller holds the database lock.

    Returns the number of illustrations linked.
    """
    matcher = matcher or delta_matcher()
    targets = []
    for art_index, data in delta_arts:
        try:
            img_hash = bytes_to_image_hash(data)
        except DecodeError as e:
            logger.warning(f"[{card.card_number}] holoDelta art {art_index}: {e}")
            continue
        targets.append(Target(key=art_index, img_hash=img_hash))

    for illust in card.illustrations:
        illust.delta_art_index = None
    queries = [Query(key=i, img_hash=illust.img_hash)
               for i, illust in enumerate(card.illustrations)]

    linked = 0
    for a in matcher.match(queries, targets).by_kind(BY_IMAGE):
        card.illustrations[a.query.key].delta_art_index = a.target.key
        linked += 1
    return linked


def import_holodelta(db, path):
    """Link every known card to holoDelta arts. Returns the number of illustrations linked."""
    print("Importing holoDelta images...")
    arts = read_delta_arts(path)
    matcher = delta_matcher()

    total = 0
    updated = 0
    for card_number, delta_arts in arts.items():
        total += len(delta_arts)
        card = db.get(card_number)
        if card is None:
            continue
        with db.transaction():
            updated += match_card_arts(card, delta_arts, matcher)

    print(f"Processed {total} holoDelta cards")
    print(f"Updated {updated} hOCG illustrations")
    return updated
