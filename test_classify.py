import pytest

from classify import (
    bloom_level_from_text,
    card_type_from_text,
    colors_from_text,
    default_max_amount,
    is_buzz,
    is_limited,
    keyword_effect_from_text,
)
from models import BloomLevel, CardType, Color, KeywordEffect


@pytest.mark.parametrize("text, expected", [
    ("推しホロメン", CardType.OSHI_HOLOMEM),
    ("Oshi Holomem", CardType.OSHI_HOLOMEM),
    ("ホロメン", CardType.HOLOMEM),
    ("Buzz Holomem", CardType.HOLOMEM),
    ("サポート・スタッフ・LIMITED", CardType.STAFF),
    ("Support・Event", CardType.EVENT),
    ("Support・Fan", CardType.FAN),
    ("エール", CardType.CHEER),
    ("Something new", CardType.OTHER),
    ("", None),
])
def test_card_type(text, expected):
    assert card_type_from_text(text) == expected


@pytest.mark.parametrize("text, expected", [
    ("Debut", BloomLevel.DEBUT),
    ("1st", BloomLevel.FIRST),
    ("1st Buzz Holomem", BloomLevel.FIRST),
    ("2nd", BloomLevel.SECOND),
    ("Spot Holomem", BloomLevel.SPOT),
    ("Support・Item", None),
])
def test_bloom_level(text, expected):
    assert bloom_level_from_text(text) == expected


@pytest.mark.parametrize("text, expected", [
    ("白", [Color.WHITE]),
    ("白緑", [Color.WHITE, Color.GREEN]),
    ("◇", [Color.COLORLESS]),
    ("White/Green", [Color.WHITE, Color.GREEN]),
    ("red, blue", [Color.RED, Color.BLUE]),
    ("None", [Color.COLORLESS]),
    ("Red/Red", [Color.RED]),
    ("", []),
])
def test_colors(text, expected):
    assert colors_from_text(text) == expected


def test_keyword_effect():
    assert keyword_effect_from_text("Collab Effect") == KeywordEffect.COLLAB
    assert keyword_effect_from_text("ブルームエフェクト") == KeywordEffect.BLOOM
    assert keyword_effect_from_text("Gift") == KeywordEffect.GIFT
    assert keyword_effect_from_text("Arts") is None


def test_buzz_and_limited():
    assert is_buzz("1st Buzz Holomem")
    assert is_buzz("1stバズホロメン")
    assert not is_buzz("1st")
    assert is_limited("サポート・イベント・LIMITED")
    assert is_limited(ability_text="LIMITED: Only one per turn.\nDraw 2 cards.")
    assert not is_limited("Support・Event", "Draw 2 cards.")


def test_default_max_amount():
    assert default_max_amount(CardType.OSHI_HOLOMEM) == 1
    assert default_max_amount(CardType.CHEER) == 20
    assert default_max_amount(CardType.HOLOMEM) == 4
    assert default_max_amount(
        CardType.HOLOMEM, " You may include any number of this holomem in the deck ") == 50
