"""
matcher.py
Assign observed illustrations (queries) to existing illustration slots (targets).

Order of precedence for each query:
  1. identifier:  a target already holds the query's manage_id
  2. image path:  a target already stores the same image file
  3. image:       greedy walk over (distance, rarity mismatch, target
                  order, query order) within the tolerance bands
  4. leftovers:   identifier without image → oldest unclaimed unreleased
                  slot of the same rarity, otherwise a new slot (or
                  unmatched when creation isn't allowed)

Tolerance bands (config.DIST_TOLERANCE_*):
  - released target, same rarity:        SAME
  - unreleased target, same rarity:      DIFF  (SAME for "P" proxy queries)
  - unreleased target, other rarity:     DIFF
  - released target, other rarity:       not eligible

The matcher never touches the database; callers apply the MatchResult.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from config import (
    DIST_TOLERANCE_CO_ASSIGN,
    DIST_TOLERANCE_DIFF_RARITY,
    DIST_TOLERANCE_SAME_RARITY,
    PROXY_RARITY,
)
from image_hash import MAX_DISTANCE, dist_hash

logger = logging.getLogger("matcher")

# Assignment kinds
BY_ID = "id"
BY_PATH = "path"
BY_IMAGE = "image"
BY_FALLBACK = "fallback"
NEW = "new"
UNMATCHED = "unmatched"


@dataclass
class Query:
    """One observed illustration."""
    key: object
    rarity: str = ""
    img_hash: str = ""
    manage_id: Optional[int] = None
    img_path: Optional[str] = None


@dataclass
class Target:
    """One existing illustration slot (in illustration order)."""
    key: object
    rarity: str = ""
    img_hash: str = ""
    manage_ids: list = field(default_factory=list)
    img_path: Optional[str] = None
    released: bool = False


@dataclass
class Assignment:
    query: Query
    target: Optional[Target]
    kind: str
    distance: Optional[int] = None


@dataclass
class MatchResult:
    assignments: list = field(default_factory=list)

    def by_kind(self, kind):
        return [a for a in self.assignments if a.kind == kind]

    def for_query(self, key):
        for a in self.assignments:
            if a.query.key == key:
                return a
        return None

    def targets_of(self, target_key):
        return [a.query for a in self.assignments
                if a.target is not None and a.target.key == target_key]


def same_rarity(a, b):
    return (a or "").casefold() == (b or "").casefold()


class CandidateMatcher:
    """
    Greedy query → target assignment.

    Args:
        same_rarity_tolerance: band for released targets (None = no limit)
        diff_rarity_tolerance: band for unreleased targets (None = no limit)
        co_assign_tolerance: when set, a claimed target may absorb another
            query whose distance is within min distance + tolerance
        check_rarity: released targets of another rarity are ineligible
        allow_create: leftovers become NEW instead of UNMATCHED
    """

    def __init__(self,
                 same_rarity_tolerance=DIST_TOLERANCE_SAME_RARITY,
                 diff_rarity_tolerance=DIST_TOLERANCE_DIFF_RARITY,
                 co_assign_tolerance=DIST_TOLERANCE_CO_ASSIGN,
                 check_rarity=True,
                 allow_create=True,
                 proxy_rarity=PROXY_RARITY):
        self.same_rarity_tolerance = same_rarity_tolerance
        self.diff_rarity_tolerance = diff_rarity_tolerance
        self.co_assign_tolerance = co_assign_tolerance
        self.check_rarity = check_rarity
        self.allow_create = allow_create
        self.proxy_rarity = proxy_rarity

    # ─────────────────────────────────────────────────────────────
    # Eligibility / tolerance
    # ─────────────────────────────────────────────────────────────

    def is_eligible(self, query, target):
        if not self.check_rarity:
            return True
        return same_rarity(query.rarity, target.rarity) or not target.released

    def within_tolerance(self, query, target, dist):
        if dist >= MAX_DISTANCE:
            return False
        if target.released:
            band = self.same_rarity_tolerance
        elif (same_rarity(query.rarity, target.rarity)
              and same_rarity(query.rarity, self.proxy_rarity)):
            # proxies share a rarity across unrelated artworks
            band = self.same_rarity_tolerance
        else:
            band = self.diff_rarity_tolerance
        return band is None or dist <= band

    # ─────────────────────────────────────────────────────────────
    # Matching
    # ─────────────────────────────────────────────────────────────

    def match(self, queries, targets):
        """
        Assign every query. Result assignments follow query order.

        Args:
            queries: list of Query
            targets: list of Target, oldest first
        """
        assigned = {}            # query index -> Assignment
        min_dist = {}            # target index -> best distance claimed

        # 1. identifier
        for qi, query in enumerate(queries):
            if query.manage_id is None:
                continue
            for ti, target in enumerate(targets):
                if query.manage_id in target.manage_ids:
                    dist = dist_hash(query.img_hash, target.img_hash)
                    assigned[qi] = Assignment(query, target, BY_ID, dist)
                    self._claim(min_dist, ti, dist)
                    break

        # 2. image path
        for qi, query in enumerate(queries):
            if qi in assigned or not query.img_path:
                continue
            for ti, target in enumerate(targets):
                if target.img_path == query.img_path:
                    dist = dist_hash(query.img_hash, target.img_hash)
                    assigned[qi] = Assignment(query, target, BY_PATH, dist)
                    self._claim(min_dist, ti, dist)
                    break

        # 3. image distance, greedy
        pairs = []
        for qi, query in enumerate(queries):
            if qi in assigned or not query.img_hash:
                continue
            for ti, target in enumerate(targets):
                if not self.is_eligible(query, target):
                    continue
                dist = dist_hash(query.img_hash, target.img_hash)
                if self.within_tolerance(query, target, dist):
                    mismatch = not same_rarity(query.rarity, target.rarity)
                    pairs.append((dist, mismatch, ti, qi))
        pairs.sort()

        for dist, mismatch, ti, qi in pairs:
            if qi in assigned:
                continue
            if ti in min_dist:
                if self.co_assign_tolerance is None:
                    continue
                if dist > min_dist[ti] + self.co_assign_tolerance:
                    continue
                if mismatch and self._own_rarity_open(pairs, qi, dist, min_dist):
                    continue
            assigned[qi] = Assignment(queries[qi], targets[ti], BY_IMAGE, dist)
            self._claim(min_dist, ti, dist)

        # 4. leftovers
        for qi, query in enumerate(queries):
            if qi in assigned:
                continue
            assigned[qi] = self._leftover(query, targets, min_dist)

        result = MatchResult([assigned[qi] for qi in range(len(queries))])
        for a in result.by_kind(UNMATCHED):
            logger.debug(f"Unmatched query {a.query.key} ({a.query.rarity})")
        return result

    def _own_rarity_open(self, pairs, qi, dist, min_dist):
        """True when query qi still has an unclaimed same-rarity target about as close."""
        limit = dist + (self.co_assign_tolerance or 0)
        return any(
            other_qi == qi and not other_mismatch and other_ti not in min_dist
            and other_dist <= limit
            for other_dist, other_mismatch, other_ti, other_qi in pairs
        )

    def _claim(self, min_dist, ti, dist):
        if dist is None or dist >= MAX_DISTANCE:
            # no usable image, nothing else may join this target by image
            dist = -MAX_DISTANCE
        min_dist[ti] = min(dist, min_dist.get(ti, dist))

    def _leftover(self, query, targets, min_dist):
        if query.manage_id is not None and not query.img_hash:
            for ti, target in enumerate(targets):
                if (ti not in min_dist and not target.released
                        and same_rarity(query.rarity, target.rarity)):
                    min_dist[ti] = -MAX_DISTANCE
                    return Assignment(query, target, BY_FALLBACK)

        has_signal = query.manage_id is not None or bool(query.img_hash)
        if self.allow_create and has_signal:
            return Assignment(query, None, NEW)
        return Assignment(query, None, UNMATCHED)
