"""
config.py
Central configuration for the hOCG asset builder.
API keys loaded from .env file (not committed to git).
"""

import os
from pathlib import Path

# ============================================
# Paths
# ============================================
BASE_DIR = Path(__file__).parent

# ============================================
# .env loader (no external dependency)
# ============================================
_env_path = BASE_DIR / ".env"
if _env_path.exists():
    with open(_env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                os.environ.setdefault(key.strip(), value.strip())


def _env_int(name, default):
    value = os.environ.get(name, "")
    return int(value) if value.strip() else default


ASSETS_DIR = Path(os.environ.get("HOCG_ASSETS_DIR", BASE_DIR / "assets"))
CARDS_FILE_NAME = "hocg_cards.json"
IMAGES_JP_FOLDER = "img"
IMAGES_EN_FOLDER = "img_en"
UNRELEASED_FOLDER = "unreleased"
PROXIES_FOLDER = "proxies"      # under IMAGES_EN_FOLDER

# ============================================
# Languages
# ============================================
JAPANESE = "jp"
ENGLISH = "en"
LANGUAGES = (JAPANESE, ENGLISH)
# Text in this language is only replaced while the card is unreleased
PRIMARY_LANGUAGE = JAPANESE

# ============================================
# Image hashing / matching
# ============================================
HASH_SIZE = 8                   # 8x8 gradient hash = 64 bits per channel
HASH_SEPARATOR = "|"
HASH_NOISE_FLOOR = 2            # Per-channel distance <= this counts as 1

# Product of the 4 channel distances. Tuned on official vs. sheet scans:
#   1-600:        same print, different resampling / compression
#   600-6000:     same artwork, manual crop or scan of a physical card
#   10000+:       different artwork
DIST_TOLERANCE_SAME_RARITY = _env_int("HOCG_DIST_SAME_RARITY", 600)
DIST_TOLERANCE_DIFF_RARITY = _env_int("HOCG_DIST_DIFF_RARITY", 6000)
# Extra distance allowed when one target absorbs several queries
DIST_TOLERANCE_CO_ASSIGN = _env_int("HOCG_DIST_CO_ASSIGN", 50)
# Print-proxy / promo rarity, shared by unrelated artworks
PROXY_RARITY = "P"

# ============================================
# Image output
# ============================================
WEBP_QUALITY = 80
UNRELEASED_IMAGE_SIZE = (400, 559)

# ============================================
# Sources
# ============================================
DECKLOG_SEARCH_URL = "https://decklog.bushiroad.com/system/app/api/search/9"
DECKLOG_REFERER = "https://decklog.bushiroad.com/"
DECKLOG_DECK_TYPES = ("N", "OSHI", "YELL")
OFFICIAL_IMAGES_URL = "https://hololive-official-cardgame.com/wp-content/images/cardlist/"
OFFICIAL_CARDLIST_URL = "https://hololive-official-cardgame.com/cardlist/cardsearch_ex"
# Title of the generic page served past the last result page
OFFICIAL_EMPTY_PAGE_TITLE = "hololive OFFICIAL CARD GAME｜ホロライブプロダクション"

SHEET_ID = "1IdaueY-Jw8JXjYLOhA9hUd2w0VRBao9Z1URJwmCWJ64"
SHEET_EXPORT_URL = f"https://docs.google.com/spreadsheets/d/{SHEET_ID}/export"
GOOGLE_SHEETS_API_KEY = os.environ.get("GOOGLE_SHEETS_API_KEY", "")

YUYUTEI_SEARCH_URL = "https://yuyu-tei.jp/sell/hocg/s/search"
SCRAPERAPI_API_KEY = os.environ.get("SCRAPERAPI_API_KEY", "")

# Download settings
TIMEOUT = 15
RETRY_COUNT = 2
RETRY_DELAY = 2
DEFAULT_WORKERS = _env_int("HOCG_WORKERS", 8)
