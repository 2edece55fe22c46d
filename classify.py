"""
classify.py
Free-text → enum classification for card type, bloom level, colors and
keyword effects, in both Japanese and English.

Each classifier is an ordered table of (patterns, variant). The first row
with a pattern contained in the (lowercased) text wins.
"""

from models import BloomLevel, CardType, Color, KeywordEffect

# ============================================
# Tables
# ============================================
CARD_TYPE_TABLE = [
    (("推し", "oshi"), CardType.OSHI_HOLOMEM),
    (("ホロメン", "holomem"), CardType.HOLOMEM),
    (("スタッフ", "staff"), CardType.STAFF),
    (("アイテム", "item"), CardType.ITEM),
    (("イベント", "event"), CardType.EVENT),
    (("ツール", "tool"), CardType.TOOL),
    (("マスコット", "mascot"), CardType.MASCOT),
    (("ファン", "fan"), CardType.FAN),
    (("エール", "cheer"), CardType.CHEER),
]

BLOOM_LEVEL_TABLE = [
    (("1st",), BloomLevel.FIRST),
    (("2nd",), BloomLevel.SECOND),
    (("debut",), BloomLevel.DEBUT),
    (("spot",), BloomLevel.SPOT),
]

# Japanese uses one glyph per color, English uses words split on "/"
COLOR_GLYPHS = {
    "白": Color.WHITE,
    "緑": Color.GREEN,
    "赤": Color.RED,
    "青": Color.BLUE,
    "紫": Color.PURPLE,
    "黄": Color.YELLOW,
    "◇": Color.COLORLESS,
}

COLOR_WORDS = {
    "white": Color.WHITE,
    "green": Color.GREEN,
    "red": Color.RED,
    "blue": Color.BLUE,
    "purple": Color.PURPLE,
    "yellow": Color.YELLOW,
    "colorless": Color.COLORLESS,
    "none": Color.COLORLESS,
}

KEYWORD_EFFECT_TABLE = [
    (("collab effect", "コラボエフェクト"), KeywordEffect.COLLAB),
    (("bloom effect", "ブルームエフェクト"), KeywordEffect.BLOOM),
    (("gift", "ギフト"), KeywordEffect.GIFT),
]

# Holomem that ignore the 4-copies deck rule
ANY_NUMBER_EXTRA = "You may include any number of this holomem in the deck"


def _lookup(table, text):
    if not text:
        return None
    text = text.lower()
    for patterns, variant in table:
        if any(p in text for p in patterns):
            return variant
    return None


# ============================================
# Classifiers
# ============================================

def card_type_from_text(text):
    """Card type from a type string (e.g. "ホロメン", "Buzz Holomem", "Support・Event")."""
    return _lookup(CARD_TYPE_TABLE, text) or (CardType.OTHER if text else None)


def bloom_level_from_text(text):
    """None when the text names no bloom level (e.g. support cards)."""
    return _lookup(BLOOM_LEVEL_TABLE, text)


def keyword_effect_from_text(text):
    return _lookup(KEYWORD_EFFECT_TABLE, text)


def colors_from_text(text):
    """
    Parse a color field.

    Accepts glyph strings ("白緑", "◇") and word lists ("White/Green",
    "None"). Unknown tokens are ignored. Returns colors in glyph/word order
    without duplicates.
    """
    if not text:
        return []
    colors = []
    if any(glyph in text for glyph in COLOR_GLYPHS):
        for char in text:
            color = COLOR_GLYPHS.get(char)
            if color and color not in colors:
                colors.append(color)
        return colors
    for word in text.replace(",", "/").split("/"):
        color = COLOR_WORDS.get(word.strip().lower())
        if color and color not in colors:
            colors.append(color)
    return colors


def is_buzz(type_text):
    return "buzz" in (type_text or "").lower() or "バズ" in (type_text or "")


def is_limited(type_text="", ability_text=""):
    """LIMITED is either in the type line or a "Limited:" rule line."""
    return ("limited" in (type_text or "").lower()
            or "limited:" in (ability_text or "").lower())


def default_max_amount(card_type, english_extra=None):
    """Copies allowed in a deck when no source reported it."""
    if card_type == CardType.OSHI_HOLOMEM:
        return 1
    if card_type == CardType.CHEER:
        return 20
    if english_extra and english_extra.strip() == ANY_NUMBER_EXTRA:
        return 50
    return 4
