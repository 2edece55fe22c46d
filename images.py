"""
images.py
Download, convert and package card images.

  - official images: HEAD for Last-Modified, GET only when newer (or forced),
    re-encode to WebP, refresh the illustration fingerprint
  - unreleased images (sheet): resized to 400x559 WebP
  - English proxies: local scans named like the Japanese image, stored as
    WebP under img_en/proxies/
  - zip the image folder, garbage collect files nothing references

Usage:
    fetch = make_fetcher(http_session())
    download_images(db, images_dir, http_session())
"""

import logging
import os
import time
import zipfile
from concurrent.futures import ThreadPoolExecutor
from email.utils import parsedate_to_datetime
from pathlib import Path, PurePosixPath

import requests
from PIL import Image

from config import (
    DECKLOG_REFERER,
    DEFAULT_WORKERS,
    ENGLISH,
    JAPANESE,
    OFFICIAL_IMAGES_URL,
    PROXIES_FOLDER,
    RETRY_COUNT,
    RETRY_DELAY,
    TIMEOUT,
    UNRELEASED_IMAGE_SIZE,
    WEBP_QUALITY,
)
from image_hash import DecodeError, decode_image, to_image_hash

logger = logging.getLogger("images")


def http_session():
    session = requests.Session()
    session.headers.update({"Referer": DECKLOG_REFERER, "User-Agent": "hocg-assets/1.0"})
    return session


def get_bytes(session, url, retries=RETRY_COUNT):
    """GET with retries. Raises requests.exceptions.RequestException."""
    for attempt in range(retries + 1):
        try:
            resp = session.get(url, timeout=TIMEOUT)
            resp.raise_for_status()
            return resp.content
        except requests.exceptions.RequestException as e:
            # 404 won't get better
            status = getattr(e.response, "status_code", None)
            if attempt < retries and status != 404:
                time.sleep(RETRY_DELAY)
                continue
            raise
    return None


def make_fetcher(session):
    """fetch_image callable for reconcile.reconcile_batch()."""
    def fetch(obs):
        return get_bytes(session, obs.image_url)
    return fetch


def official_image_url(img_path):
    # stored as webp, served as png
    return OFFICIAL_IMAGES_URL + img_path.replace(".webp", ".png")


def _is_newer(last_modified, known):
    """True when the remote Last-Modified is newer than the stored token."""
    if not last_modified or not known:
        return True
    try:
        return parsedate_to_datetime(last_modified) > parsedate_to_datetime(known)
    except (TypeError, ValueError):
        return True


# ============================================
# Encoding
# ============================================

def save_webp(img, path, quality=WEBP_QUALITY):
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path, "WEBP", quality=quality)


def save_unreleased_image(img, path):
    """Resize a sheet image to the official card size and save as WebP."""
    resized = img.convert("RGB").resize(UNRELEASED_IMAGE_SIZE, Image.LANCZOS)
    save_webp(resized, path)


# ============================================
# Official images
# ============================================

def download_image(db, card, illust, images_dir, session, force=False, language=JAPANESE):
    """
    Refresh one official image.

    Returns "downloaded", "skipped" or "failed".
    """
    img_path = illust.img_path.value(language)
    url = official_image_url(img_path)
    try:
        head = session.head(url, timeout=TIMEOUT)
        last_modified = head.headers.get("Last-Modified")
        if not force and not _is_newer(last_modified, illust.img_last_modified):
            return "skipped"

        img = decode_image(get_bytes(session, url))
        img_hash = to_image_hash(img)
        save_webp(img, images_dir / img_path)
    except (requests.exceptions.RequestException, DecodeError, OSError) as e:
        logger.warning(f"[{card.card_number}] {url}: {e}")
        with db.transaction():
            illust.img_hash = ""
        return "failed"

    with db.transaction():
        illust.img_hash = img_hash
        illust.img_last_modified = last_modified or illust.img_last_modified
    return "downloaded"


def download_images(db, images_dir, session, force=False, number_filter=None,
                    workers=DEFAULT_WORKERS, language=JAPANESE):
    """
    Download every released illustration image of the database.

    Returns a dict of counts: downloaded / skipped / failed.
    """
    work = [
        (card, illust) for card, illust in db.illustrations()
        if illust.released and illust.img_path.value(language)
        and (not number_filter or card.card_number.startswith(number_filter))
    ]
    print(f"Downloading {len(work)} images...")

    counts = {"downloaded": 0, "skipped": 0, "failed": 0}
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        results = pool.map(
            lambda item: download_image(db, item[0], item[1], images_dir, session, force, language),
            work)
        for status in results:
            counts[status] += 1
            if status == "downloaded" and counts["downloaded"] % 10 == 0:
                print(f"  {counts['downloaded']} images downloaded ({counts['skipped']} skipped)")

    print(f"{counts['downloaded']} images downloaded ({counts['skipped']} skipped, "
          f"{counts['failed']} failed)")
    return counts


# ============================================
# English proxies
# ============================================

BLANK_FOLDERS = {"blank", "blanks"}


def index_proxy_files(proxy_dir):
    """{file stem: path} of every proxy scan, ignoring blank/ folders. First file wins."""
    proxy_dir = Path(proxy_dir)
    files = {}
    for path in sorted(proxy_dir.rglob("*")):
        if not path.is_file():
            continue
        folders = {p.lower() for p in path.relative_to(proxy_dir).parts[:-1]}
        if folders & BLANK_FOLDERS:
            continue
        files.setdefault(path.stem, path)
    return files


def prepare_en_proxy_images(db, images_en_dir, proxy_dir, number_filter=None):
    """
    Copy English proxy scans next to the English images.

    A proxy matches a released illustration when its file name (without
    extension) equals the Japanese image's. The WebP copy is written to
    <images_en_dir>/proxies/<japanese img_path> and becomes the English
    img_path, unless the illustration already has a non-proxy English image.

    Returns a dict of counts: copied / skipped / failed.

    Raises:
        NotADirectoryError: proxy_dir is not a folder.
    """
    if not Path(proxy_dir).is_dir():
        raise NotADirectoryError(f"proxy path should be a folder: {proxy_dir}")

    files = index_proxy_files(proxy_dir)
    work = [
        (card, illust) for card, illust in db.illustrations()
        if illust.released and illust.img_path.value(JAPANESE)
        and (not number_filter or card.card_number.startswith(number_filter))
    ]
    print(f"Preparing {len(work)} proxy images...")

    counts = {"copied": 0, "skipped": 0, "failed": 0}
    for card, illust in work:
        jp_path = PurePosixPath(illust.img_path.value(JAPANESE))
        current = illust.img_path.value(ENGLISH)
        source = files.get(jp_path.stem)
        if source is None or (current and not current.startswith(PROXIES_FOLDER + "/")):
            counts["skipped"] += 1
            continue

        en_path = str(PurePosixPath(PROXIES_FOLDER) / jp_path.with_suffix(".webp"))
        try:
            img = decode_image(source.read_bytes())
            save_webp(img, images_en_dir / en_path)
        except (DecodeError, OSError) as e:
            logger.warning(f"[{card.card_number}] {source}: {e}")
            counts["failed"] += 1
            continue

        with db.transaction():
            illust.img_path.set(ENGLISH, en_path)
        counts["copied"] += 1
        if counts["copied"] % 10 == 0:
            print(f"  {counts['copied']} images copied ({counts['skipped']} skipped)")

    print(f"{counts['copied']} proxy images copied ({counts['skipped']} skipped, "
          f"{counts['failed']} failed)")
    return counts


# ============================================
# Packaging
# ============================================

def zip_images(name, assets_dir, images_dir):
    """Zip the images folder to <assets_dir>/<name>.zip."""
    zip_path = (assets_dir / name).with_suffix(".zip")
    with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zf:
        for root, dirs, files in os.walk(images_dir):
            dirs.sort()
            for file_name in sorted(files):
                path = os.path.join(root, file_name)
                zf.write(path, os.path.relpath(path, images_dir))
    print(f"Created {zip_path}")
    return zip_path


def referenced_paths(db, language):
    return {
        illust.img_path.value(language)
        for _, illust in db.illustrations()
        if illust.img_path.value(language)
    }


def garbage_collect(db, images_dir, language=JAPANESE, dry_run=False):
    """
    Delete image files that no illustration points to.

    Returns the list of removed relative paths.
    """
    keep = referenced_paths(db, language)
    removed = []
    for root, _, files in os.walk(images_dir):
        for file_name in files:
            path = os.path.join(root, file_name)
            rel = os.path.relpath(path, images_dir).replace(os.sep, "/")
            if rel in keep:
                continue
            removed.append(rel)
            if not dry_run:
                os.remove(path)
    removed.sort()
    if removed:
        print(f"{'Would remove' if dry_run else 'Removed'} {len(removed)} unused images")
    return removed
