"""
yuyutei.py
Attach yuyu-tei.jp sell page urls to illustrations.

Listings are keyed by (card number, rarity). Two modes:
  quick   keep existing urls, reuse a url for illustrations sharing the same
          image file, then hand out the remaining urls first come first served
  images  start over; when a (number, rarity) has several urls or several
          illustrations, compare the listing pictures with the illustrations

Usage:
    listings = fetch_listings(http_session())
    assign_quick(db, listings)
"""

import logging
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from config import (
    DEFAULT_WORKERS,
    JAPANESE,
    SCRAPERAPI_API_KEY,
    TIMEOUT,
    YUYUTEI_SEARCH_URL,
)
from image_hash import DecodeError, bytes_to_image_hash
from matcher import BY_IMAGE, CandidateMatcher, Query, Target

logger = logging.getLogger("yuyutei")

# Listing kept for the card text before an errata
BEFORE_ERRATA = "エラッタ前"
SCRAPERAPI_URL = "https://api.scraperapi.com/"


@dataclass
class YuyuteiListing:
    url: str
    card_number: str
    rarity: str
    img_url: str = ""
    name: str = ""


# ============================================
# Scraping
# ============================================

def fetch_page(session, page):
    params = {"search_word": "", "page": str(page)}
    if SCRAPERAPI_API_KEY:
        resp = session.get(SCRAPERAPI_URL, timeout=70, params={
            "api_key": SCRAPERAPI_API_KEY,
            "url": f"{YUYUTEI_SEARCH_URL}?{urlencode(params)}",
            "session_number": "123",
        })
    else:
        resp = session.get(YUYUTEI_SEARCH_URL, params=params, timeout=TIMEOUT)
    resp.raise_for_status()
    return resp.text


def parse_listings(html):
    """
    Parse one search page.

    Returns (listings, max_page). max_page is 0 when the page has no pagination.
    """
    soup = BeautifulSoup(html, "html.parser")
    listings = []
    for card_list in soup.select("#card-list3"):
        rarity_tag = card_list.select_one("h3 span")
        rarity = rarity_tag.get_text(strip=True) if rarity_tag else ""
        for product in card_list.select(".card-product"):
            number = product.select_one("span")
            name = product.select_one("h4")
            link = product.select_one("a")
            img = link.select_one("img") if link else None
            if not (number and link and img and link.get("href") and img.get("src")):
                continue
            name = name.get_text(strip=True) if name else ""
            if BEFORE_ERRATA in name:
                continue
            listings.append(YuyuteiListing(
                url=link["href"],
                card_number=number.get_text(strip=True),
                rarity=rarity,
                img_url=img["src"],
                name=name,
            ))

    max_page = 0
    last = soup.select_one(".pagination li:nth-last-child(2) a")
    if last and last.get_text(strip=True).isdigit():
        max_page = int(last.get_text(strip=True))
    return listings, max_page


def fetch_listings(session, workers=DEFAULT_WORKERS):
    """Every listing on the site, deduplicated by url, in page order."""
    print("Scraping Yuyutei urls...")
    if SCRAPERAPI_API_KEY:
        print("using scraperapi.com")
    first, max_page = parse_listings(fetch_page(session, 1))
    pages = [first]
    if max_page > 1:
        with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
            for listings, _ in pool.map(lambda p: parse_listings(fetch_page(session, p)),
                                        range(2, max_page + 1)):
                pages.append(listings)

    by_url = OrderedDict()
    for listings in pages:
        for listing in listings:
            by_url.setdefault(listing.url, listing)
    print(f"Found {len(by_url)} Yuyutei urls...")
    return list(by_url.values())


# ============================================
# Assignment
# ============================================

def group_listings(listings):
    groups = OrderedDict()
    for listing in listings:
        groups.setdefault((listing.card_number, listing.rarity), []).append(listing)
    for (number, rarity), group in groups.items():
        if len(group) > 1:
            logger.warning(f"{number} ({rarity}) has multiple urls: {[g.url for g in group]}")
    return groups


def report_leftovers(groups):
    leftovers = [(key, l.url) for key, group in groups.items() for l in group]
    for (number, rarity), url in leftovers:
        print(f"NO MATCH: [{number}, {rarity}] - {url}")
    return leftovers


def assign_quick(db, listings):
    """
    Fill missing urls without downloading anything.

    Returns (assigned, skipped, leftovers).
    """
    by_url = OrderedDict((l.url, l) for l in listings)
    existing = {}
    skipped = 0
    for _, illust in db.illustrations():
        if not illust.yuyutei_sell_url:
            continue
        if by_url.pop(illust.yuyutei_sell_url, None) is not None:
            skipped += 1
        existing.setdefault(illust.img_path.value(JAPANESE) or "", illust.yuyutei_sell_url)

    groups = group_listings(by_url.values())
    assigned = 0
    with db.transaction():
        for card, illust in db.illustrations():
            if illust.yuyutei_sell_url:
                continue
            img_path = illust.img_path.value(JAPANESE) or ""
            if img_path and img_path in existing:
                illust.yuyutei_sell_url = existing[img_path]
                continue
            group = groups.get((card.card_number, illust.rarity))
            if group:
                listing = group.pop(0)
                illust.yuyutei_sell_url = listing.url
                existing.setdefault(img_path, listing.url)
                assigned += 1

    print(f"{assigned} Yuyutei urls updated ({skipped} skipped)")
    return assigned, skipped, report_leftovers(groups)


def url_matcher():
    # No tolerance band; one url may go to several illustrations only on an exact tie
    return CandidateMatcher(
        same_rarity_tolerance=None,
        diff_rarity_tolerance=None,
        co_assign_tolerance=0,
        check_rarity=False,
        allow_create=False,
    )


def _listing_targets(group, fetch_image):
    targets = []
    for i, listing in enumerate(group):
        try:
            img_hash = bytes_to_image_hash(fetch_image(listing))
        except (DecodeError, OSError) as e:
            logger.warning(f"Yuyutei image {listing.img_url}: {e}")
            continue
        targets.append(Target(key=i, img_hash=img_hash))
    return targets


def _match_group(illustrations, group, targets, matcher):
    queries = [Query(key=i, img_hash=illust.img_hash) for i, illust in enumerate(illustrations)]
    used = set()
    for a in matcher.match(queries, targets).by_kind(BY_IMAGE):
        illustrations[a.query.key].yuyutei_sell_url = group[a.target.key].url
        used.add(a.target.key)
    return used


def assign_by_images(db, listings, fetch_image):
    """
    Reassign every url, comparing pictures where a rarity is ambiguous.

    Args:
        fetch_image: callable(listing) -> bytes

    Returns (assigned, leftovers).
    """
    groups = group_listings(listings)
    matcher = url_matcher()
    assigned = 0
    for card in db:
        by_rarity = OrderedDict()
        with db.transaction():
            for illust in card.illustrations:
                illust.yuyutei_sell_url = None
                by_rarity.setdefault(illust.rarity, []).append(illust)

        for rarity, illustrations in by_rarity.items():
            group = groups.get((card.card_number, rarity))
            if not group:
                continue
            if len(group) == 1 and len(illustrations) == 1:
                with db.transaction():
                    illustrations[0].yuyutei_sell_url = group.pop(0).url
                assigned += 1
                continue

            targets = _listing_targets(group, fetch_image)
            with db.transaction():
                used = _match_group(illustrations, group, targets, matcher)
            assigned += sum(1 for i in illustrations if i.yuyutei_sell_url)
            groups[(card.card_number, rarity)] = [l for i, l in enumerate(group) if i not in used]

    print(f"{assigned} Yuyutei urls updated")
    return assigned, report_leftovers(groups)
