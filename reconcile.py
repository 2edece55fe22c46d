"""
reconcile.py
Attach observed illustrations to canonical illustration slots.

Flow for one batch:
  1. group observations by card number
  2. per card, in a worker thread:
       - fetch / decode / hash images (no lock held)
       - under the database lock: match against the card's illustrations,
         then create, promote or update slots
  3. collect a ReconcileReport (bound / created / unmatched / errors)

A bad image or record is recorded in the report and the batch goes on.
"""

import logging
from collections import Counter, OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional

from config import DEFAULT_WORKERS, JAPANESE
from image_hash import DecodeError, bytes_to_image_hash
from matcher import NEW, UNMATCHED, CandidateMatcher, Query, Target
from merger import mismatch
from models import CardIllustration

logger = logging.getLogger("reconcile")


@dataclass
class IllustrationObservation:
    """One illustration as a source reports it."""
    card_number: str
    language: str = JAPANESE
    rarity: str = ""
    manage_id: Optional[int] = None
    img_path: Optional[str] = None          # stored file, relative to the images dir
    image_url: Optional[str] = None
    image: Optional[bytes] = None           # raw bytes, when already downloaded
    declared_format: Optional[str] = None
    fetch_error: Optional[str] = None
    img_last_modified: Optional[str] = None
    img_hash: str = ""                      # computed by prepare_observation()
    source: str = ""


@dataclass
class Resolution:
    """Where one observation ended up."""
    observation: IllustrationObservation
    illustration: CardIllustration
    kind: str
    distance: Optional[int] = None


@dataclass
class ReconcileReport:
    bound: Counter = field(default_factory=Counter)     # kind -> count
    created: int = 0
    unmatched: list = field(default_factory=list)       # IllustrationObservation
    errors: list = field(default_factory=list)          # (card_number, reason)
    warnings: list = field(default_factory=list)        # MergeWarning
    resolved: list = field(default_factory=list)        # Resolution

    def merge(self, other):
        self.bound.update(other.bound)
        self.created += other.created
        self.unmatched.extend(other.unmatched)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        self.resolved.extend(other.resolved)
        return self

    def sort(self):
        self.unmatched.sort(key=lambda o: (o.card_number, o.rarity, o.manage_id or 0))
        self.errors.sort()
        self.warnings.sort(key=lambda w: (w.card_number, w.field))
        self.resolved.sort(key=lambda r: (r.observation.card_number, r.illustration.sort_key()))

    def summary(self):
        return {
            "bound": sum(self.bound.values()),
            "by_id": self.bound.get("id", 0),
            "by_path": self.bound.get("path", 0),
            "by_image": self.bound.get("image", 0),
            "by_fallback": self.bound.get("fallback", 0),
            "created": self.created,
            "unmatched": len(self.unmatched),
            "errors": len(self.errors),
            "warnings": len(self.warnings),
        }


# ============================================
# Image preparation (outside the lock)
# ============================================

def prepare_observation(obs, fetch_image=None):
    """
    Compute obs.img_hash from its image bytes (fetched if needed).

    Returns an error message, or None on success / when there is no image.
    """
    if obs.img_hash:
        return None
    data = obs.image
    if data is None and obs.fetch_error is None and fetch_image and obs.image_url:
        try:
            data = fetch_image(obs)
        except Exception as e:
            obs.fetch_error = str(e)
    if obs.fetch_error:
        return f"fetch failed: {obs.fetch_error}"
    if data is None:
        return None
    try:
        obs.img_hash = bytes_to_image_hash(data, obs.declared_format)
    except DecodeError as e:
        obs.img_hash = ""
        return f"decode failed: {e}"
    return None


# ============================================
# Per card
# ============================================

def _apply(db, card, illust, obs, was_released, report):
    lang = obs.language
    if obs.manage_id is not None:
        db.assign_manage_id(card, illust, lang, obs.manage_id)
    illust.card_number = card.card_number

    if obs.rarity:
        if not illust.rarity or not was_released or obs.manage_id is not None:
            illust.rarity = obs.rarity
        elif illust.rarity != obs.rarity:
            report.warnings.append(
                mismatch(card.card_number, f"rarity {illust.label()}", obs.rarity, illust.rarity))

    if obs.img_path:
        current = illust.img_path.value(lang)
        if current is None or not was_released or obs.manage_id is not None:
            illust.img_path.set(lang, obs.img_path)

    if obs.img_hash and (not illust.img_hash or not was_released):
        illust.img_hash = obs.img_hash
    if obs.img_last_modified:
        illust.img_last_modified = obs.img_last_modified


def _match_language(db, card, observations, matcher, report):
    lang = observations[0].language
    slots = list(card.illustrations)
    targets = [
        Target(
            key=i,
            rarity=illust.rarity,
            img_hash=illust.img_hash,
            manage_ids=illust.manage_ids(lang),
            img_path=illust.img_path.value(lang),
            released=illust.released,
        )
        for i, illust in enumerate(slots)
    ]
    queries = [
        Query(key=i, rarity=obs.rarity, img_hash=obs.img_hash,
              manage_id=obs.manage_id, img_path=obs.img_path)
        for i, obs in enumerate(observations)
    ]
    released_before = [illust.released for illust in slots]

    result = matcher.match(queries, targets)
    for a in result.assignments:
        obs = observations[a.query.key]
        if a.kind == UNMATCHED:
            logger.warning(f"[{card.card_number}] unmatched {obs.rarity} "
                           f"illustration ({obs.source or 'unknown source'})")
            report.unmatched.append(obs)
            continue
        if a.kind == NEW:
            illust = CardIllustration(card_number=card.card_number, rarity=obs.rarity)
            card.illustrations.append(illust)
            was_released = False
            report.created += 1
        else:
            illust = slots[a.target.key]
            was_released = released_before[a.target.key]
            report.bound[a.kind] += 1
        _apply(db, card, illust, obs, was_released, report)
        report.resolved.append(Resolution(obs, illust, a.kind, a.distance))


def reconcile_card(db, card_number, observations, matcher=None, allow_create=True):
    """
    Match and apply all observations of one card number.

    Images must already be hashed (see prepare_observation).
    """
    if matcher is None:
        matcher = CandidateMatcher(allow_create=allow_create)
    report = ReconcileReport()

    by_language = OrderedDict()
    for obs in observations:
        by_language.setdefault(obs.language, []).append(obs)

    with db.transaction():
        card = db.get_or_create(card_number)
        for lang_observations in by_language.values():
            _match_language(db, card, lang_observations, matcher, report)
        card.sort_illustrations()
    return report


# ============================================
# Batch
# ============================================

def _reconcile_group(db, card_number, observations, fetch_image, matcher):
    report = ReconcileReport()
    for obs in observations:
        error = prepare_observation(obs, fetch_image)
        if error:
            logger.warning(f"[{card_number}] {obs.image_url or obs.img_path}: {error}")
            report.errors.append((card_number, error))
    return report.merge(reconcile_card(db, card_number, observations, matcher))


def reconcile_batch(db, observations, fetch_image=None, workers=DEFAULT_WORKERS,
                    matcher=None, allow_create=True):
    """
    Reconcile many observations, one worker per card number.

    Args:
        db: CardDatabase
        observations: iterable of IllustrationObservation
        fetch_image: optional callable(obs) -> bytes for observations that
            only carry an image_url
        workers: thread count
        matcher: CandidateMatcher (default tolerances when None)
        allow_create: whether leftovers create new slots

    Returns:
        ReconcileReport
    """
    if matcher is None:
        matcher = CandidateMatcher(allow_create=allow_create)

    report = ReconcileReport()
    groups = OrderedDict()
    for obs in observations:
        if not obs.card_number:
            report.errors.append(("", f"observation without card number ({obs.source})"))
            continue
        groups.setdefault(obs.card_number, []).append(obs)

    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = {
            pool.submit(_reconcile_group, db, number, group, fetch_image, matcher): number
            for number, group in groups.items()
        }
        for future in as_completed(futures):
            number = futures[future]
            try:
                report.merge(future.result())
            except Exception as e:
                logger.error(f"[{number}] reconcile failed: {e}")
                report.errors.append((number, str(e)))

    report.sort()
    return report
