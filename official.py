"""
official.py
Japanese card details from the official card list (hololive-official-cardgame.com).

The text view of the card search lists every card with:
  - type (e.g. Buzzホロメン), tags, colors, LIFE/HP, bloom level, baton pass
  - ability text, oshi skills, keywords, arts, extra

Each entry links to the detail page of one printing (?id=<manage_id>),
the only place that names the illustrator. Detail pages are requested once
per illustration: an illustration without illustrator stores "".

Usage:
    updated, warnings = import_official(db, images.http_session())
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import parse_qs, urljoin, urlparse

import requests
from bs4 import BeautifulSoup, NavigableString

from classify import (
    bloom_level_from_text,
    card_type_from_text,
    colors_from_text,
    is_buzz,
    is_limited,
    keyword_effect_from_text,
)
from config import (
    DEFAULT_WORKERS,
    JAPANESE,
    OFFICIAL_CARDLIST_URL,
    OFFICIAL_EMPTY_PAGE_TITLE,
    TIMEOUT,
)
from merger import CardObservation, ObservationError, merge_card
from models import Art, CardType, Keyword, Localized, OshiSkill

logger = logging.getLogger("official")

# Rule reminder printed under LIMITED support cards
LIMITED_REMINDER = "LIMITED：ターンに１枚しか使えない。"
FULL_WIDTH_SPACE = "　"


# ============================================
# Fetch
# ============================================

def fetch_page(session, page):
    resp = session.get(OFFICIAL_CARDLIST_URL, params={"view": "text", "page": str(page)},
                       timeout=TIMEOUT)
    resp.raise_for_status()
    return resp.text


def is_past_last_page(soup):
    title = soup.title.get_text(strip=True) if soup.title else ""
    return title == OFFICIAL_EMPTY_PAGE_TITLE


def fetch_illustrator(session, url):
    """Illustrator name on a detail page, "" when it has none, None on error."""
    try:
        resp = session.get(url, timeout=TIMEOUT)
        resp.raise_for_status()
    except requests.exceptions.RequestException as e:
        logger.warning(f"{url}: {e}")
        return None
    tag = BeautifulSoup(resp.text, "html.parser").select_one(".ill-name span")
    return tag.get_text(strip=True) if tag else ""


# ============================================
# Parsing
# ============================================

def _text_lines(tag):
    """Text and image alt texts (cheer icons, colors) of a tag, one per line, in order."""
    lines = []
    for node in tag.descendants:
        if isinstance(node, NavigableString):
            text = str(node)
        else:
            text = node.get("alt") or ""
        lines.extend(line.strip() for line in text.splitlines())
    return [line for line in lines if line]


def _info_value(dd):
    alts = [img.get("alt", "") for img in dd.find_all(alt=True, recursive=False)]
    alts = " ".join(a for a in alts if a).strip()
    return alts or dd.get_text().strip()


def parse_info(obs, element):
    items = element.select(".info dl :is(dt, dd)")
    for dt, dd in zip(items[::2], items[1::2]):
        key = dt.get_text(strip=True).lower()
        value = _info_value(dd)

        if key == "カードタイプ":
            obs.card_type = card_type_from_text(value) or CardType.OTHER
            obs.buzz = is_buzz(value)
            obs.limited = is_limited(value)
        elif key == "タグ":
            obs.tags = [Localized.of(JAPANESE, t) for t in value.split()]
        elif key == "色":
            obs.colors = colors_from_text(value)
        elif key == "life" and value.isdigit():
            obs.life = int(value)
        elif key == "hp" and value.isdigit():
            obs.hp = int(value)
        elif key == "bloomレベル":
            obs.bloom_level = bloom_level_from_text(value)
        elif key == "バトンタッチ":
            obs.baton_pass = colors_from_text(value)
        elif key == "能力テキスト":
            obs.ability_text = value.strip().removesuffix(LIMITED_REMINDER).strip() or None


def _holo_power(text):
    """ "[ホロパワー：-1消費]" → "1" """
    text = text.strip().removeprefix("[ホロパワー：").removesuffix("]").removesuffix("消費")
    return text.lstrip("-").strip()


def parse_oshi_skills(element, card_number):
    skills = []
    found = [(False, p) for p in element.select(".oshi.skill p:nth-child(2)")]
    found += [(True, p) for p in element.select(".sp.skill p:nth-child(2)")]
    for special, p in found:
        parts = list(p.stripped_strings)
        if len(parts) < 3:
            logger.warning(f"[{card_number}] oshi skill not parsed: {parts!r}")
            continue
        skills.append(OshiSkill(
            special=special,
            holo_power=_holo_power(parts[0]),
            name=Localized.of(JAPANESE, parts[1]),
            ability_text=Localized.of(JAPANESE, "\n".join(parts[2:])),
        ))
    return skills


def parse_keywords(element, card_number):
    keywords = []
    for p in element.select(".keyword p:nth-child(2)"):
        lines = _text_lines(p)
        if len(lines) < 3:
            logger.warning(f"[{card_number}] keyword not parsed: {lines!r}")
            continue
        effect = keyword_effect_from_text(lines[0])
        if effect is None:
            logger.warning(f"[{card_number}] unknown keyword effect: {lines[0]!r}")
            continue
        keywords.append(Keyword(
            effect=effect,
            name=Localized.of(JAPANESE, lines[1]),
            ability_text=Localized.of(JAPANESE, "\n".join(lines[2:])),
        ))
    return keywords


def _advantage(line):
    """ "赤+50" → (RED, 50), None for anything else."""
    color, sep, amount = line.partition("+")
    colors = colors_from_text(color)
    if not sep or not colors or not amount.strip().isdigit():
        return None
    return colors[0], int(amount)


def parse_arts(element, card_number):
    arts = []
    for p in element.select(".sp.arts p:nth-child(2)"):
        cheers, lines = [], []
        for line in _text_lines(p):
            # cheer icons are single color glyphs
            colors = colors_from_text(line)
            if colors and len(line) == 1:
                cheers.extend(colors)
            else:
                lines.append(line)
        if not lines:
            logger.warning(f"[{card_number}] art name not found")
            continue

        name, _, power = lines[0].rpartition(FULL_WIDTH_SPACE)
        if not name:
            name, power = power, ""
        advantage = _advantage(lines[1]) if len(lines) > 1 else None
        text = "\n".join(lines[2:] if advantage else lines[1:]).strip()
        arts.append(Art(
            cheers=cheers,
            power=power.strip(),
            advantage=advantage,
            name=Localized.of(JAPANESE, name.strip()),
            ability_text=Localized.of(JAPANESE, text) if text else None,
        ))
    return arts


def parse_card(element):
    """
    Japanese CardObservation of one card list entry.

    Raises:
        ObservationError: the entry has no card number.
    """
    number = element.select_one(".number")
    card_number = number.get_text(strip=True) if number else ""
    if not card_number:
        raise ObservationError("card number not found")

    name = element.select_one(".name")
    obs = CardObservation(
        card_number=card_number,
        language=JAPANESE,
        name=name.get_text(strip=True) if name else None,
    )
    parse_info(obs, element)
    obs.oshi_skills = parse_oshi_skills(element, card_number)
    obs.keywords = parse_keywords(element, card_number)
    obs.arts = parse_arts(element, card_number)

    extra = element.select_one(".extra p:nth-child(2)")
    obs.extra = Localized.of(JAPANESE, extra.get_text(strip=True)) if extra else None
    return obs


def detail_link(element, base_url=OFFICIAL_CARDLIST_URL):
    """(detail page url, manage_id) of an entry, or None."""
    href = element.get("href")
    if not href:
        return None
    url = urljoin(base_url, href)
    ids = parse_qs(urlparse(url).query).get("id")
    if not ids or not ids[0].isdigit():
        return None
    return url, int(ids[0])


# ============================================
# Import
# ============================================

def _pending_illustration(card, manage_id):
    for illust in card.illustrations:
        if illust.has_manage_id(JAPANESE, manage_id) and illust.illustrator is None:
            return illust
    return None


def _fill_illustrators(db, session, lookups, workers):
    if not lookups:
        return
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        names = list(pool.map(lambda item: fetch_illustrator(session, item[1]), lookups))
    with db.transaction():
        for (illust, _), name in zip(lookups, names):
            # None: request failed, retried on the next run
            if name is not None and illust.illustrator is None:
                illust.illustrator = name


def import_official(db, session, workers=DEFAULT_WORKERS):
    """
    Merge the official card list into existing cards, page by page.

    Japanese structure (skills, keywords, arts, tags, extra) is taken from
    the site; other languages' text is carried over element by element.

    Returns:
        (updated card count, list of MergeWarning)
    """
    print("Retrieve all cards info from the official hololive site")
    updated = 0
    warnings = []
    page = 1
    while True:
        soup = BeautifulSoup(fetch_page(session, page), "html.parser")
        entries = [e for e in soup.select("li a") if e.select_one(".number")]
        if is_past_last_page(soup) or not entries:
            break

        page_updated = 0
        lookups = []
        for element in entries:
            try:
                obs = parse_card(element)
            except ObservationError as e:
                logger.warning(f"Skipping official entry: {e}")
                continue

            with db.transaction():
                card = db.get(obs.card_number)
                if card is None:
                    logger.info(f"Card {obs.card_number} not found")
                    continue
                warnings.extend(merge_card(card, obs, only_text=False))
                link = detail_link(element)
                illust = _pending_illustration(card, link[1]) if link else None
            if illust is not None:
                lookups.append((illust, link[0]))
            page_updated += 1

        _fill_illustrators(db, session, lookups, workers)
        print(f"Page {page} done: updated {page_updated} cards")
        updated += page_updated
        page += 1

    print(f"Updated {updated} cards")
    return updated, warnings
