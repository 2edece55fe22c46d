"""
build_assets.py
Build / refresh the hOCG card database and image folders.

Sources, in order:
  1. Deck Log (Japanese card list, manage ids, official images)
  2. English proxy scans (local folder)
  3. Yuyutei (sell page urls)
  4. official card list (Japanese text, illustrators)
  5. @ogbajoj's sheet (English text, unreleased images)
  6. holoDelta (art indexes)

Usage:
    python build_assets.py                          # Deck Log only
    python build_assets.py --number-filter hBP01 --download-images
    python build_assets.py --skip-update --ogbajoj-sheet --zip-images
    python build_assets.py --yuyutei quick
"""

import argparse
import logging
import sys
from pathlib import Path

from prettytable import PrettyTable

from config import (
    ASSETS_DIR,
    CARDS_FILE_NAME,
    DEFAULT_WORKERS,
    ENGLISH,
    IMAGES_EN_FOLDER,
    IMAGES_JP_FOLDER,
    JAPANESE,
)
from database import CardDatabase
from decklog import fetch_all, import_decklog
from holodelta import import_holodelta
from images import (
    download_images,
    garbage_collect,
    get_bytes,
    http_session,
    make_fetcher,
    prepare_en_proxy_images,
    zip_images,
)
from official import import_official
from overrides import apply_overrides
from sheet import download_unreleased_images, fetch_rows, import_sheet
from yuyutei import assign_by_images, assign_quick, fetch_listings

logger = logging.getLogger("build_assets")


def print_report(title, report):
    table = PrettyTable()
    table.field_names = ["Result", "Count"]
    table.align["Result"] = "l"
    table.align["Count"] = "r"
    for key, value in report.summary().items():
        table.add_row([key, value])
    print(f"\n{title}")
    print(table)

    for card_number, reason in report.errors:
        print(f"  ERROR [{card_number}] {reason}")
    for obs in report.unmatched:
        print(f"  UNMATCHED [{obs.card_number}, {obs.rarity}] {obs.source or ''}")


def print_warnings(warnings):
    if not warnings:
        return
    table = PrettyTable()
    table.field_names = ["Card", "Field", "Observed", "Kept"]
    table.align["Field"] = "l"
    table.align["Observed"] = "l"
    table.align["Kept"] = "l"
    for w in sorted(warnings, key=lambda w: (w.card_number, w.field)):
        table.add_row([w.card_number, w.field, _short(w.observed), _short(w.kept)])
    print(f"\n{len(warnings)} merge warnings")
    print(table)


def _short(value, width=40):
    text = str(value)
    return text if len(text) <= width else text[:width - 3] + "..."


def main():
    parser = argparse.ArgumentParser(
        description="Build the hOCG card database from Deck Log, @ogbajoj's sheet, holoDelta and Yuyutei"
    )
    parser.add_argument(
        "--number-filter", type=str, default="",
        help="Only retrieve cards whose number starts with this (e.g. hBP01)"
    )
    parser.add_argument(
        "--expansion", type=str, default="",
        help="Only retrieve cards of this Deck Log expansion"
    )
    parser.add_argument(
        "--download-images", action="store_true",
        help="Download official images newer than the stored ones"
    )
    parser.add_argument(
        "--force-download", action="store_true",
        help="Download official images even when unchanged"
    )
    parser.add_argument(
        "--optimized-original-images", action="store_true",
        help="Keep Deck Log's .png image paths"
    )
    parser.add_argument(
        "--clean", action="store_true",
        help="Start from an empty database"
    )
    parser.add_argument(
        "--assets-path", type=str, default=str(ASSETS_DIR),
        help=f"Assets folder (default: {ASSETS_DIR})"
    )
    parser.add_argument(
        "--skip-update", action="store_true",
        help="Skip the Deck Log import"
    )
    parser.add_argument(
        "--ogbajoj-sheet", action="store_true",
        help="Import English text and unreleased images from @ogbajoj's sheet"
    )
    parser.add_argument(
        "--proxy-path", type=str, default="",
        help="Folder of English proxy scans, named like the Japanese images"
    )
    parser.add_argument(
        "--official-hololive", action="store_true",
        help="Import Japanese text and illustrators from the official card list"
    )
    parser.add_argument(
        "--holodelta-path", type=str, default="",
        help="Path to holoDelta's cards.db"
    )
    parser.add_argument(
        "--yuyutei", choices=["quick", "images"], default=None,
        help="Assign Yuyutei sell urls (quick: keep existing; images: compare pictures)"
    )
    parser.add_argument(
        "--zip-images", action="store_true",
        help="Zip the image folders"
    )
    parser.add_argument(
        "--gc", action="store_true",
        help="Delete image files no illustration references"
    )
    parser.add_argument(
        "--workers", type=int, default=DEFAULT_WORKERS,
        help=f"Worker threads (default: {DEFAULT_WORKERS})"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Debug logging"
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    print("=" * 60)
    print("hOCG Card Database Builder")
    print("=" * 60)
    print()

    assets_dir = Path(args.assets_path)
    assets_dir.mkdir(parents=True, exist_ok=True)
    cards_path = assets_dir / CARDS_FILE_NAME
    images_dir = assets_dir / IMAGES_JP_FOLDER
    images_en_dir = assets_dir / IMAGES_EN_FOLDER

    db = CardDatabase() if args.clean else CardDatabase.load(cards_path)
    print(f"Loaded {len(db)} cards from {cards_path}")

    session = http_session()
    warnings = []

    # Deck Log
    if not args.skip_update:
        raw = fetch_all(session, keyword=args.number_filter, expansion=args.expansion)
        report, merge_warnings = import_decklog(
            db, raw, fetch_image=make_fetcher(session), workers=args.workers,
            optimized_images=args.optimized_original_images)
        warnings.extend(merge_warnings)
        print_report("Deck Log", report)

    if args.download_images or args.force_download:
        download_images(db, images_dir, session, force=args.force_download,
                        number_filter=args.number_filter, workers=args.workers)

    # English proxies
    if args.proxy_path:
        if not Path(args.proxy_path).is_dir():
            print(f"Proxy folder not found: {args.proxy_path}")
            sys.exit(1)
        prepare_en_proxy_images(db, images_en_dir, args.proxy_path,
                                number_filter=args.number_filter)

    # Yuyutei
    if args.yuyutei and (args.number_filter or args.expansion):
        print("Yuyutei: only available when retrieving all cards, skipped")
    elif args.yuyutei:
        listings = fetch_listings(session, workers=args.workers)
        if args.yuyutei == "quick":
            assign_quick(db, listings)
        else:
            assign_by_images(db, listings, lambda listing: get_bytes(session, listing.img_url))

    # Official card list
    if args.official_hololive:
        _, official_warnings = import_official(db, session, workers=args.workers)
        warnings.extend(official_warnings)

    # @ogbajoj's sheet
    if args.ogbajoj_sheet:
        rows = fetch_rows(session)
        _, sheet_warnings = import_sheet(db, rows)
        warnings.extend(sheet_warnings)
        report = download_unreleased_images(db, rows, assets_dir, session, args.workers)
        print_report("Unreleased images", report)

    # holoDelta
    if args.holodelta_path:
        if not Path(args.holodelta_path).exists():
            print(f"holoDelta database not found: {args.holodelta_path}")
            sys.exit(1)
        import_holodelta(db, args.holodelta_path)

    changed = apply_overrides(db)
    if changed:
        print(f"Applied {changed} card fixes")

    conflicts = db.identifier_conflicts()
    for lang, manage_id, holders in conflicts:
        logger.error(f"manage_id {lang}-{manage_id} held by {holders}")

    db.save(cards_path)
    print(f"\nSaved {len(db)} cards to {cards_path}")
    print_warnings(warnings)

    if args.gc:
        garbage_collect(db, images_dir, JAPANESE)
        garbage_collect(db, images_en_dir, ENGLISH)

    if args.zip_images:
        zip_images(IMAGES_JP_FOLDER, assets_dir, images_dir)
        if images_en_dir.exists():
            zip_images(IMAGES_EN_FOLDER, assets_dir, images_en_dir)


if __name__ == "__main__":
    main()
