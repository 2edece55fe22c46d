import json

import pytest
import requests
import responses

from config import DECKLOG_SEARCH_URL, JAPANESE, OFFICIAL_IMAGES_URL
from database import CardDatabase
from decklog import fetch_all, fetch_deck_type, import_decklog, parse_card
from matcher import BY_ID
from merger import ObservationError
from models import BloomLevel, Card, CardType


def raw_card(**overrides):
    raw = {
        "card_number": "hSD01-003",
        "manage_id": "3",
        "card_kind": "ホロメン",
        "name": "ときのそら",
        "rare": "C",
        "img": "hSD01/hSD01-003_C.png",
        "bloom_level": "Debut",
        "max": "4",
    }
    raw.update(overrides)
    return raw


def test_parse_card():
    card, illust = parse_card(raw_card())

    assert card.card_number == "hSD01-003"
    assert card.language == JAPANESE
    assert card.name == "ときのそら"
    assert card.card_type == CardType.HOLOMEM
    assert card.bloom_level == BloomLevel.DEBUT
    assert card.max_amount == 4
    assert card.buzz is False
    assert illust.manage_id == 3
    assert illust.rarity == "C"
    assert illust.img_path == "hSD01/hSD01-003_C.webp"
    assert illust.image_url == OFFICIAL_IMAGES_URL + "hSD01/hSD01-003_C.png"


def test_parse_card_keeps_png_for_optimized_images():
    _, illust = parse_card(raw_card(), optimized_images=True)
    assert illust.img_path == "hSD01/hSD01-003_C.png"


def test_oshi_max_is_one():
    card, _ = parse_card(raw_card(card_kind="推しホロメン", max="50", bloom_level=""))
    assert card.card_type == CardType.OSHI_HOLOMEM
    assert card.max_amount == 1
    assert card.bloom_level is None


def test_known_card_number_fix():
    card, illust = parse_card(raw_card(card_number="hSD01-001", manage_id="532"))
    assert card.card_number == "hSD06-001"
    assert illust.card_number == "hSD06-001"


@pytest.mark.parametrize("field, value", [("card_number", ""), ("max", None), ("max", "x"),
                                          ("manage_id", "abc")])
def test_parse_card_rejects_bad_rows(field, value):
    with pytest.raises(ObservationError):
        parse_card(raw_card(**{field: value}))


def test_import_binds_known_identifier_without_fetching(make_released):
    card = Card(card_number="hSD06-001")
    card.illustrations = [make_released("hSD06-001", 532, rarity="OSR")]
    db = CardDatabase([card])
    fetched = []

    report, warnings = import_decklog(
        db,
        [raw_card(card_number="hSD01-001", manage_id="532", rare="OSR", card_kind="推しホロメン")],
        fetch_image=fetched.append,
    )

    assert fetched == []
    assert report.bound[BY_ID] == 1
    assert report.created == 0
    assert "hSD01-001" not in db
    assert db.get("hSD06-001").card_type == CardType.OSHI_HOLOMEM
    assert warnings == []


def test_import_fetches_unknown_images(make_png):
    db = CardDatabase()

    report, _ = import_decklog(db, [raw_card(), raw_card(max=None)],
                               fetch_image=lambda obs: make_png(1))

    assert report.created == 1
    assert len(report.errors) == 1
    illust = db.get("hSD01-003").illustrations[0]
    assert illust.img_hash
    assert illust.img_path.jp == "hSD01/hSD01-003_C.webp"
    assert db.get("hSD01-003").max_amount.jp == 4


@responses.activate
def test_fetch_deck_type_pages_until_empty():
    responses.add(responses.POST, DECKLOG_SEARCH_URL, json=[raw_card(), raw_card(manage_id="4")])
    responses.add(responses.POST, DECKLOG_SEARCH_URL, json=[])

    cards = fetch_deck_type(requests.Session(), "N", keyword="hSD01")

    assert [c["manage_id"] for c in cards] == ["3", "4"]
    body = json.loads(responses.calls[0].request.body)
    assert body["param"]["deck_type"] == "N"
    assert body["param"]["keyword"] == "hSD01"
    assert body["page"] == 1
    assert json.loads(responses.calls[1].request.body)["page"] == 2


@responses.activate
def test_fetch_all_covers_every_deck_type():
    responses.add(responses.POST, DECKLOG_SEARCH_URL, json=[])

    assert fetch_all(requests.Session(), keyword="hBP01") == []
    deck_types = sorted(json.loads(c.request.body)["param"]["deck_type"] for c in responses.calls)
    assert deck_types == ["N", "OSHI", "YELL"]
