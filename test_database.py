import json
import threading

from config import ENGLISH, JAPANESE
from database import CardDatabase
from models import (
    UNSET,
    Art,
    BloomLevel,
    Card,
    CardIllustration,
    CardType,
    Color,
    Localized,
)


def test_assign_manage_id_moves_the_identifier(small_db):
    azki = small_db.get("hSD01-002")
    new_slot = CardIllustration(card_number="hSD01-002", rarity="OSR")
    azki.illustrations.append(new_slot)

    stripped = small_db.assign_manage_id(azki, new_slot, JAPANESE, 1)

    assert stripped == [("hSD01-001", "JP-1")]
    assert small_db.find_by_manage_id(JAPANESE, 1) == (azki, new_slot)
    assert not small_db.get("hSD01-001").illustrations[0].released
    assert small_db.identifier_conflicts() == []


def test_same_id_in_both_languages_is_not_a_conflict(small_db):
    card = small_db.get("hSD01-001")
    card.illustrations[0].add_manage_id(ENGLISH, 2)
    assert small_db.identifier_conflicts() == []

    card.illustrations[1].add_manage_id(JAPANESE, 2)
    assert small_db.identifier_conflicts() == [(JAPANESE, 2, ["hSD01-001", "hSD01-002"])]


def test_illustrations_sorted_by_identifier():
    card = Card(card_number="hBP01-001")
    card.illustrations = [
        CardIllustration(rarity="SEC"),
        CardIllustration(rarity="SR", manage_id=Localized(jp=[30])),
        CardIllustration(rarity="UR", manage_id=Localized(en=[5])),
        CardIllustration(rarity="RR", manage_id=Localized(jp=[12, 40])),
    ]
    card.sort_illustrations()
    assert [i.rarity for i in card.illustrations] == ["RR", "SR", "UR", "SEC"]


def test_iteration_is_sorted_and_find_misses(small_db):
    small_db.get_or_create("hBP01-001")
    assert [c.card_number for c in small_db] == ["hBP01-001", "hSD01-001", "hSD01-002"]
    assert small_db.find_by_manage_id(JAPANESE, 999) == (None, None)
    assert "hBP01-001" in small_db
    assert len(small_db) == 3


def test_save_load_round_trip(tmp_path, small_db):
    card = small_db.get("hSD01-001")
    card.card_type = CardType.OSHI_HOLOMEM
    card.colors = []
    card.bloom_level = None
    card.life = 5
    card.extra = None
    card.arts = [Art(cheers=[Color.WHITE, Color.COLORLESS], power="30",
                     advantage=(Color.RED, 20), name=Localized(jp="アーツ"))]
    card.max_amount = Localized(jp=1, en=1)

    path = tmp_path / "hocg_cards.json"
    small_db.save(path)
    loaded = CardDatabase.load(path)

    again = loaded.get("hSD01-001")
    assert again == card
    assert again.colors == []
    assert again.bloom_level is None
    assert again.hp is UNSET
    assert again.arts[0].advantage == (Color.RED, 20)
    assert loaded.to_list() == small_db.to_list()


def test_unset_fields_are_omitted(tmp_path, small_db):
    path = tmp_path / "hocg_cards.json"
    small_db.save(path)
    data = json.loads(path.read_text(encoding="utf-8"))
    azki = data[1]
    assert azki["card_number"] == "hSD01-002"
    assert "colors" not in azki
    assert "extra" not in azki
    assert azki["name"] == {"jp": "AZKi", "en": None}
    # no ASCII escaping of Japanese text
    assert "ときのそら" in path.read_text(encoding="utf-8")


def test_load_missing_file_is_empty(tmp_path):
    assert len(CardDatabase.load(tmp_path / "missing.json")) == 0


def test_load_legacy_values():
    db = CardDatabase.from_list([{
        "card_number": "hSD01-003",
        "name": "ときのそら",
        "bloom_level": "1st",
        "illustrations": [{"manage_id": 7, "rarity": "C"}, {"manage_id": None, "rarity": "P"}],
    }])
    card = db.get("hSD01-003")
    assert card.name.jp == "ときのそら"
    assert card.bloom_level == BloomLevel.FIRST
    assert card.illustrations[0].manage_ids(JAPANESE) == [7]
    assert not card.illustrations[1].released


def test_concurrent_get_or_create_returns_one_card():
    db = CardDatabase()
    seen = []

    def worker():
        seen.append(db.get_or_create("hBP02-001"))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(db) == 1
    assert all(card is seen[0] for card in seen)
