from config import ENGLISH
from database import CardDatabase
from models import UNSET, Card, Localized
from overrides import EXTRA_FIXES, apply_overrides, fix_observation
from reconcile import IllustrationObservation


def test_fix_observation_by_manage_id():
    obs = fix_observation(IllustrationObservation(card_number="hSD01-001", manage_id=532))
    assert obs.card_number == "hSD06-001"

    obs = fix_observation(IllustrationObservation(card_number="hSD01-001", manage_id=1))
    assert obs.card_number == "hSD01-001"


def test_apply_overrides_is_idempotent():
    db = CardDatabase([
        Card(card_number="hSD09-003", extra=Localized(jp="このホロメンがダウンした時、ライフ-2")),
        Card(card_number="hSD10-010", extra=None),
        Card(card_number="hBP01-001"),
    ])

    assert apply_overrides(db) == 2
    assert apply_overrides(db) == 0
    assert db.get("hSD09-003").extra.en == EXTRA_FIXES["hSD09-003"]
    assert db.get("hSD09-003").extra.jp == "このホロメンがダウンした時、ライフ-2"
    assert db.get("hSD10-010").extra.value(ENGLISH) == EXTRA_FIXES["hSD10-010"]
    assert db.get("hBP01-001").extra is UNSET
