import pytest
import requests
import responses

from config import ENGLISH, JAPANESE
from database import CardDatabase
from matcher import BY_IMAGE
from models import (
    UNSET,
    BloomLevel,
    Card,
    CardIllustration,
    CardType,
    Color,
    Keyword,
    KeywordEffect,
    Localized,
)
from sheet import (
    SheetRow,
    clean_text,
    download_unreleased_images,
    extract_sections,
    import_sheet,
    parse_cheers,
    parse_power,
    parse_rows,
    parse_tags,
    row_to_observation,
    sheet_illustrations,
    split_name,
    to_oshi_skill,
    unreleased_path,
)

HOLOMEM_TEXT = """Collab Effect: "Let's Sing"
Draw 1 card.

Arts: "Hello Hello"
Cost: 1 White, 1 Colorless
Power: 30, +50 vs Red

[Translator's note: wordplay]
Extra: This holomem cannot Bloom"""

CSV_TEXT = (
    'Setcode,"Card Name ""JP (EN)""",Language,Rarity,Type,Color,LIFE/HP,Tags,Text,Hash Image,Image\n'
    '"hSD01-003","ときのそら\n(Tokino Sora)",JP,C,Debut Holomem,White,90,#JP #Gen0,Hi,https://h/1,https://f/1\n'
    ',,,,,,,,,,\n'
    '"hSD01-004",AZKi,EN,C,Debut Holomem,Green,80,#JP,,,\n'
)


def holomem_row(**overrides):
    values = dict(row_idx=2, set_code="hSD01-003", name="ときのそら\n(Tokino Sora)",
                  rarity="C", card_type="Debut Holomem", color="White", life_hp="90",
                  tags="#JP #Gen0", text=HOLOMEM_TEXT, sheet_name="hSD01")
    values.update(overrides)
    return SheetRow(**values)


def test_parse_rows_skips_blank_rows():
    rows = parse_rows(CSV_TEXT, sheet_name="hSD01")
    assert [r.set_code for r in rows] == ["hSD01-003", "hSD01-004"]
    assert rows[0].row_idx == 2
    assert rows[0].name == "ときのそら\n(Tokino Sora)"
    assert rows[0].language == JAPANESE
    assert rows[1].language == ENGLISH
    assert rows[0].hash_img_url == "https://h/1"
    assert rows[1].sheet_name == "hSD01"


def test_clean_text_drops_notes_and_limited_line():
    text = "LIMITED: One per turn.\nDraw 2 cards.\n[note]"
    assert clean_text(text) == "Draw 2 cards."


def test_extract_sections():
    lines = ["Intro", "Arts: a", "Cost: 1 White", "", "Outro", "Arts: b", "Power: 10"]
    sections, remaining = extract_sections(lines, ["arts"])
    assert sections == [["Arts: a", "Cost: 1 White"], ["Arts: b", "Power: 10"]]
    assert remaining == ["Intro", "Outro"]


def test_split_name_and_tags():
    assert split_name("ときのそら\n(Tokino Sora)") == ("ときのそら", "Tokino Sora")
    assert split_name("AZKi") == ("AZKi", "AZKi")
    assert [t.en for t in parse_tags("#JP #Gen0 #Song")] == ["#JP", "#Gen0", "#Song"]
    assert parse_tags("") == []


def test_cheers_and_power():
    assert parse_cheers("1 White, 2 Colorless") == [Color.WHITE, Color.COLORLESS, Color.COLORLESS]
    assert parse_cheers("") == []
    assert parse_power("50, +20 vs Red") == ("50", (Color.RED, 20))
    assert parse_power("20+") == ("20+", None)


def test_oshi_skill():
    skill = to_oshi_skill(['SP Oshi Skill holo Power -2: "Sora Days"', "Once per game."])
    assert skill.special
    assert skill.holo_power == "2"
    assert skill.name.en == "Sora Days"
    assert skill.ability_text.en == "Once per game."
    assert to_oshi_skill(["Oshi Skill without a name"]) is None


def test_row_to_observation():
    obs = row_to_observation(holomem_row())

    assert obs.card_number == "hSD01-003"
    assert obs.language == ENGLISH
    assert obs.name == "Tokino Sora"
    assert obs.card_type == CardType.HOLOMEM
    assert obs.bloom_level == BloomLevel.DEBUT
    assert obs.colors == [Color.WHITE]
    assert obs.hp == 90
    assert [t.en for t in obs.tags] == ["#JP", "#Gen0"]
    assert [(k.effect, k.name.en, k.ability_text.en) for k in obs.keywords] == [
        (KeywordEffect.COLLAB, "Let's Sing", "Draw 1 card.")]
    art = obs.arts[0]
    assert art.name.en == "Hello Hello"
    assert art.cheers == [Color.WHITE, Color.COLORLESS]
    assert art.power == "30"
    assert art.advantage == (Color.RED, 50)
    assert art.ability_text is None
    assert obs.extra.en == "This holomem cannot Bloom"
    assert obs.ability_text is None
    assert obs.oshi_skills == []


def test_oshi_row_sets_life():
    obs = row_to_observation(holomem_row(card_type="Oshi", life_hp="5", text="Plain text"))
    assert obs.life == 5
    assert obs.ability_text == "Plain text"
    assert obs.extra is None


def test_import_sheet_updates_existing_cards_only(make_released):
    card = Card(card_number="hSD01-003", card_type=CardType.HOLOMEM, hp=90,
                keywords=[Keyword(KeywordEffect.COLLAB, name=Localized(jp="歌おう"),
                                  ability_text=Localized(jp="1枚引く。"))])
    card.illustrations = [make_released("hSD01-003", 3)]
    db = CardDatabase([card])

    updated, warnings = import_sheet(db, [holomem_row(), holomem_row(set_code="hSD99-001")])

    assert updated == 1
    assert "hSD99-001" not in db
    assert card.name.en == "Tokino Sora"
    assert card.name.jp == "ときのそら"
    assert card.keywords[0].name.en == "Let's Sing"
    assert card.keywords[0].name.jp == "歌おう"
    assert card.arts[0].name.en == "Hello Hello"
    assert warnings == []


def test_import_sheet_applies_overrides():
    db = CardDatabase([Card(card_number="hSD10-010")])
    import_sheet(db, [])
    assert db.get("hSD10-010").extra.en == "This holomem cannot Bloom"


def test_cheer_names_are_shared_by_set():
    cheers = [Card(card_number=f"hY01-00{i}", card_type=CardType.CHEER) for i in (1, 2)]
    db = CardDatabase(cheers)
    row = holomem_row(set_code="hY01-001", name="白エール\n(White Cheer)", card_type="Cheer",
                      color="White", life_hp="", tags="", text="")

    import_sheet(db, [row])

    assert db.get("hY01-002").name.en == "White Cheer"


def test_sheet_illustrations_skip_master_sheet():
    rows = [
        holomem_row(hash_img_url="https://h/1"),
        holomem_row(hash_img_url="https://h/2", sheet_name="Master Sheet"),
        holomem_row(hash_img_url=""),
    ]
    observations = sheet_illustrations(rows)
    assert [o.image_url for o in observations] == ["https://h/1"]
    assert observations[0].source == "hSD01:2"


def test_unreleased_path_avoids_collisions():
    card = Card(card_number="hBP07-050")
    card.illustrations = [CardIllustration(img_path=Localized(jp="unreleased/hBP07-050_SR.webp"))]
    assert unreleased_path(card, "SR", JAPANESE) == "unreleased/hBP07-050_SR_2.webp"
    assert unreleased_path(card, "SR", ENGLISH) == "unreleased/hBP07-050_SR.webp"


@pytest.mark.parametrize("life_hp", ["", "-", "?"])
def test_unknown_hp_is_not_reported(life_hp):
    assert row_to_observation(holomem_row(life_hp=life_hp)).hp is UNSET


@responses.activate
def test_download_unreleased_images(tmp_path, make_png, make_image, encode_png):
    responses.add(responses.GET, "https://h/1", body=make_png(1))
    responses.add(responses.GET, "https://f/1", body=encode_png(make_image(1, size=(630, 880))))
    db = CardDatabase([Card(card_number="hBP07-001")])
    rows = [holomem_row(set_code="hBP07-001", rarity="SR", sheet_name="hBP07",
                        hash_img_url="https://h/1", full_size_img_url="https://f/1")]

    report = download_unreleased_images(db, rows, tmp_path, requests.Session(), workers=1)

    assert report.created == 1
    illust = db.get("hBP07-001").illustrations[0]
    assert illust.img_path.jp == "unreleased/hBP07-001_SR.webp"
    assert (tmp_path / "img" / "unreleased" / "hBP07-001_SR.webp").exists()

    again = download_unreleased_images(db, rows, tmp_path, requests.Session(), workers=1)
    assert again.created == 0
    assert again.bound[BY_IMAGE] == 1
    assert len(db.get("hBP07-001").illustrations) == 1
