"""
sheet.py
English text and unreleased card images from @ogbajoj's translation sheet.

Each tab is exported as CSV. Rows are keyed by set code; only cards that
already exist in the database are updated (Deck Log creates cards).

Text column layout, sections separated by a blank line:

    Oshi Skill holo Power -1: "Name"        SP Oshi Skill holo Power -2: "Name"
    <ability text>

    Collab Effect: "Name"                   Bloom Effect / Gift: "Name"
    <ability text>

    Arts: "Name"
    Cost: 1 White, 1 Colorless
    Power: 50, +20 vs Red
    <optional ability text>

    Extra: <text>

Anything left outside sections is the card's ability text.

Usage:
    rows = parse_rows(fetch_sheet_csv(session, gid), sheet_name="hBP01")
    updated, warnings = import_sheet(db, rows)
"""

import csv
import io
import logging
import re
from dataclasses import dataclass

from classify import (
    bloom_level_from_text,
    card_type_from_text,
    colors_from_text,
    is_buzz,
    is_limited,
    keyword_effect_from_text,
)
from config import (
    ENGLISH,
    GOOGLE_SHEETS_API_KEY,
    IMAGES_EN_FOLDER,
    IMAGES_JP_FOLDER,
    JAPANESE,
    SHEET_EXPORT_URL,
    SHEET_ID,
    TIMEOUT,
    UNRELEASED_FOLDER,
)
from image_hash import DecodeError, decode_image
from images import get_bytes, make_fetcher, save_unreleased_image
from matcher import NEW
from merger import CardObservation, ObservationError, merge_card
from models import Art, CardType, Color, Keyword, Localized, OshiSkill
from overrides import apply_overrides
from reconcile import IllustrationObservation, reconcile_batch

logger = logging.getLogger("sheet")

SHEET_API_URL = f"https://sheets.googleapis.com/v4/spreadsheets/{SHEET_ID}"
SHEET_TITLE = "Hololive OCG/TCG card translations"

# Low quality duplicates of the other tabs
SKIPPED_IMAGE_SHEETS = {"Master Sheet"}

COLUMNS = {
    "set_code": "Setcode",
    "name": 'Card Name "JP (EN)"',
    "language": "Language",
    "rarity": "Rarity",
    "card_type": "Type",
    "color": "Color",
    "life_hp": "LIFE/HP",
    "tags": "Tags",
    "text": "Text",
    "hash_img_url": "Hash Image",
    "full_size_img_url": "Image",
}


@dataclass
class SheetRow:
    row_idx: int
    set_code: str
    name: str
    language: str = JAPANESE
    rarity: str = ""
    card_type: str = ""
    color: str = ""
    life_hp: str = ""
    tags: str = ""
    text: str = ""
    hash_img_url: str = ""
    full_size_img_url: str = ""
    sheet_name: str = ""


# ============================================
# Fetch / parse
# ============================================

def fetch_sheet_tabs(session):
    """[(title, gid), ...] of the spreadsheet. Needs GOOGLE_SHEETS_API_KEY."""
    resp = session.get(SHEET_API_URL, params={"key": GOOGLE_SHEETS_API_KEY}, timeout=TIMEOUT)
    resp.raise_for_status()
    data = resp.json()
    title = data.get("properties", {}).get("title")
    if title != SHEET_TITLE:
        raise ValueError(f"Wrong spreadsheet: {title!r}")
    return [(s["properties"].get("title", ""), s["properties"]["sheetId"])
            for s in data.get("sheets", [])]


def fetch_rows(session):
    """Rows of every tab."""
    rows = []
    for title, gid in fetch_sheet_tabs(session):
        rows.extend(parse_rows(fetch_sheet_csv(session, gid), sheet_name=title))
    print(f"Found {len(rows)} sheet rows")
    return rows


def fetch_sheet_csv(session, gid):
    resp = session.get(
        SHEET_EXPORT_URL,
        params={"id": SHEET_ID, "gid": str(gid), "format": "csv", "key": GOOGLE_SHEETS_API_KEY},
        timeout=TIMEOUT,
    )
    resp.raise_for_status()
    resp.encoding = "utf-8"
    return resp.text


def parse_rows(csv_text, sheet_name=""):
    """Rows with both a set code and a name, in sheet order."""
    rows = []
    reader = csv.DictReader(io.StringIO(csv_text))
    for idx, record in enumerate(reader, start=2):
        values = {key: (record.get(column) or "").strip() for key, column in COLUMNS.items()}
        if not values["set_code"] or not values["name"]:
            continue
        language = ENGLISH if values.pop("language").upper() in ("EN", "ENGLISH") else JAPANESE
        rows.append(SheetRow(row_idx=idx, language=language, sheet_name=sheet_name, **values))
    return rows


# ============================================
# Text sections
# ============================================

def clean_text(text):
    """Drop the "LIMITED:" rule line and [translator's notes]."""
    lines = []
    for line in text.splitlines():
        line = line.strip()
        if line.lower().startswith("limited:"):
            continue
        if line.startswith("[") and line.endswith("]"):
            continue
        lines.append(line)
    return "\n".join(lines).strip()


def extract_sections(lines, starts):
    """
    Pull out blocks starting with one of `starts` (case-insensitive) up to a blank line.

    Returns (sections, remaining_lines).
    """
    starts = [s.lower() for s in starts]
    sections, remaining, current = [], [], []
    in_section = False
    for line in lines:
        if not in_section and any(line.lower().startswith(s) for s in starts):
            in_section = True
        if not in_section:
            remaining.append(line)
        elif not line:
            in_section = False
            if current:
                sections.append(current)
                current = []
        else:
            current.append(line)
    if current:
        sections.append(current)
    return sections, remaining


def _unquote(text):
    return text.strip().strip('"').strip()


def _color_word(word):
    return Color.__members__.get(word.strip().upper(), Color.COLORLESS)


def to_oshi_skill(lines):
    head, sep, name = lines[0].partition(":")
    if not sep:
        return None
    head = head.strip()
    special = head.lower().startswith("sp oshi skill")
    head = re.sub(r"^(sp )?oshi skill", "", head, flags=re.IGNORECASE).strip()
    head = re.sub(r"^holo power", "", head, flags=re.IGNORECASE).strip()
    return OshiSkill(
        special=special,
        holo_power=head.lstrip("-").strip(),
        name=Localized.of(ENGLISH, _unquote(name)),
        ability_text=Localized.of(ENGLISH, "\n".join(lines[1:]).strip()),
    )


def to_keyword(lines):
    head, sep, name = lines[0].partition(":")
    if not sep:
        return None
    effect = keyword_effect_from_text(head)
    if effect is None:
        logger.warning(f"Unknown keyword effect: {head!r}")
        return None
    return Keyword(
        effect=effect,
        name=Localized.of(ENGLISH, _unquote(name)),
        ability_text=Localized.of(ENGLISH, "\n".join(lines[1:]).strip()),
    )


def parse_cheers(cost):
    """ "1 White, 2 Colorless" → [WHITE, COLORLESS, COLORLESS]"""
    cheers = []
    for part in cost.split(","):
        amount, sep, color = part.strip().partition(" ")
        if not sep or not amount.isdigit():
            continue
        cheers.extend([_color_word(color)] * int(amount))
    return cheers


def parse_power(text):
    """ "50, +20 vs Red" → ("50", (RED, 20))"""
    power, sep, advantage = text.partition(",")
    if not sep or "vs" not in advantage:
        return power.strip(), None
    amount, _, color = advantage.partition("vs")
    amount = amount.strip().lstrip("+")
    return power.strip(), (_color_word(color), int(amount) if amount.isdigit() else 0)


def to_art(lines):
    if len(lines) < 3:
        return None
    _, sep_name, name = lines[0].partition(":")
    _, sep_cost, cost = lines[1].partition(":")
    _, sep_power, power = lines[2].partition(":")
    if not (sep_name and sep_cost and sep_power):
        return None
    power, advantage = parse_power(power)
    ability_text = "\n".join(lines[3:]).strip()
    return Art(
        cheers=parse_cheers(cost),
        power=power,
        advantage=advantage,
        name=Localized.of(ENGLISH, _unquote(name)),
        ability_text=Localized.of(ENGLISH, ability_text) if ability_text else None,
    )


def to_extra(lines):
    _, sep, extra = lines[0].partition(":")
    if not sep:
        return None
    return Localized.of(ENGLISH, extra.strip())


def _parse_all(sections, parser, row, what):
    parsed = []
    for lines in sections:
        item = parser(lines)
        if item is None:
            logger.warning(f"[{row.set_code}] {what} not parsed: {lines[0]!r}")
            continue
        parsed.append(item)
    return parsed


# ============================================
# Row → observation
# ============================================

def split_name(name):
    """ 'JP\\n(EN)' → ("JP", "EN"); a single name is used for both."""
    if "\n(" in name:
        jp, _, en = name.partition("\n(")
        return jp.strip(), en.strip().lstrip("(").rstrip(")").strip()
    return name.strip(), name.strip()


def parse_tags(tags):
    return [Localized.of(ENGLISH, f"#{t.strip()}") for t in tags.split("#") if t.strip()]


def row_to_observation(row):
    """
    English CardObservation of one sheet row.

    Raises:
        ObservationError: the row has no set code.
    """
    if not row.set_code:
        raise ObservationError(f"row {row.row_idx}: no set code")

    _, en_name = split_name(row.name)
    card_type = card_type_from_text(row.card_type) or CardType.OTHER
    obs = CardObservation(
        card_number=row.set_code,
        language=ENGLISH,
        name=en_name,
        card_type=card_type,
        colors=colors_from_text(row.color),
        bloom_level=bloom_level_from_text(row.card_type),
        buzz=is_buzz(row.card_type),
        limited=is_limited(ability_text=row.text),
        tags=parse_tags(row.tags),
    )

    if row.life_hp.isdigit():
        if card_type == CardType.OSHI_HOLOMEM:
            obs.life = int(row.life_hp)
        elif card_type == CardType.HOLOMEM:
            obs.hp = int(row.life_hp)

    lines = [line.strip() for line in clean_text(row.text).splitlines()]
    sections, lines = extract_sections(lines, ["Oshi Skill", "SP Oshi Skill"])
    obs.oshi_skills = _parse_all(sections, to_oshi_skill, row, "oshi skill")
    sections, lines = extract_sections(lines, ["Collab Effect", "Bloom Effect", "Gift"])
    obs.keywords = _parse_all(sections, to_keyword, row, "keyword")
    sections, lines = extract_sections(lines, ["Arts"])
    obs.arts = _parse_all(sections, to_art, row, "art")
    sections, lines = extract_sections(lines, ["Extra"])
    extras = _parse_all(sections, to_extra, row, "extra")
    obs.extra = extras[0] if extras else None

    ability_text = "\n".join(lines).strip()
    obs.ability_text = ability_text or None
    return obs


# ============================================
# Import
# ============================================

def _propagate_cheer_names(db, cheer_names):
    # cheers of one set share a name, only xxx-001 is always in the sheet
    for card in db:
        if card.card_type != CardType.CHEER:
            continue
        prefix = card.card_number.split("-", 1)[0]
        name = cheer_names.get(prefix)
        if name and card.name.value(ENGLISH) is None:
            card.name.set(ENGLISH, name)


def import_sheet(db, rows):
    """
    Merge English sheet rows into existing cards, then apply overrides.

    Released cards only get their English text refreshed (only_text=True).

    Returns:
        (updated card count, list of MergeWarning)
    """
    updated = 0
    warnings = []
    cheer_names = {}
    for row in rows:
        card = db.get(row.set_code)
        if card is None:
            continue
        try:
            obs = row_to_observation(row)
        except ObservationError as e:
            logger.warning(f"Skipping sheet row: {e}")
            continue

        with db.transaction():
            jp_name, _ = split_name(row.name)
            if card.name.value(JAPANESE) is None:
                card.name.set(JAPANESE, jp_name.replace("\n", " "))
            warnings.extend(merge_card(card, obs, only_text=card.released))
        updated += 1

        if card.card_type == CardType.CHEER and card.card_number.endswith("-001"):
            cheer_names.setdefault(card.card_number.split("-", 1)[0], obs.name)

    with db.transaction():
        _propagate_cheer_names(db, cheer_names)
    apply_overrides(db)

    missing = sum(1 for c in db if c.card_type != CardType.CHEER and c.name.value(ENGLISH) is None)
    print(f"Updated {updated} cards ({missing} missing English names)")
    return updated, warnings


# ============================================
# Unreleased images
# ============================================

def sheet_illustrations(rows):
    """Illustration observations for rows with an image to match on."""
    observations = []
    for row in rows:
        if row.sheet_name in SKIPPED_IMAGE_SHEETS or not row.hash_img_url:
            continue
        observations.append(IllustrationObservation(
            card_number=row.set_code,
            language=row.language,
            rarity=row.rarity,
            image_url=row.hash_img_url,
            source=f"{row.sheet_name}:{row.row_idx}",
        ))
    return observations


def unreleased_path(card, rarity, language):
    """First free unreleased/<number>_<rarity>[_n].webp for this card."""
    taken = {i.img_path.value(language) for i in card.illustrations}
    path = f"{UNRELEASED_FOLDER}/{card.card_number}_{rarity}.webp"
    counter = 2
    while path in taken:
        path = f"{UNRELEASED_FOLDER}/{card.card_number}_{rarity}_{counter}.webp"
        counter += 1
    return path


def download_unreleased_images(db, rows, assets_dir, session, workers):
    """
    Match sheet images to illustrations and save new or changed unreleased images.

    Sheet images bound to released illustrations are left alone (the
    official image wins).

    Returns the ReconcileReport.
    """
    print("Downloading unreleased images from @ogbajoj's sheet...")
    by_source = {f"{r.sheet_name}:{r.row_idx}": r for r in rows}
    observations = [o for o in sheet_illustrations(rows) if o.card_number in db]
    report = reconcile_batch(db, observations, fetch_image=make_fetcher(session), workers=workers)

    saved = 0
    for res in report.resolved:
        illust, obs = res.illustration, res.observation
        if illust.released:
            continue
        lang = obs.language
        images_dir = assets_dir / (IMAGES_EN_FOLDER if lang == ENGLISH else IMAGES_JP_FOLDER)
        with db.transaction():
            card = db.get(obs.card_number)
            path = illust.img_path.value(lang)
            if path is None:
                path = unreleased_path(card, obs.rarity, lang)
                illust.img_path.set(lang, path)
        if res.kind != NEW and res.distance == 1 and (images_dir / path).exists():
            continue

        row = by_source[obs.source]
        try:
            img = decode_image(get_bytes(session, row.full_size_img_url or row.hash_img_url))
            save_unreleased_image(img, images_dir / path)
            saved += 1
        except (DecodeError, OSError, ValueError) as e:
            # requests errors are OSError subclasses
            logger.warning(f"[{obs.card_number}] full size image failed: {e}")
            with db.transaction():
                illust.img_hash = ""

    print(f"{saved} unreleased images saved ({report.created} new, "
          f"{len(report.unmatched)} unmatched, {len(report.errors)} errors)")
    return report
