"""
models.py
Canonical card records, as stored in hocg_cards.json.

One Card per card number. Each Card exclusively owns its list of
CardIllustration (one per artwork / printing). Categorical fields start as
UNSET ("not observed yet") which is distinct from an observed empty value
(e.g. colors == [] or bloom_level is None).

Serialization is lossless: UNSET fields are omitted from the JSON and come
back as UNSET, observed-empty values are written out.

Illustration order: released slots first (smallest Japanese, then English
manage_id), unreleased slots last in their existing order. Among slots at the
same distance and of the query's rarity the matcher takes the first in this
order, so a released slot wins over an unreleased one.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from config import ENGLISH, JAPANESE, LANGUAGES


# ─────────────────────────────────────────────────────────────
# UNSET SENTINEL
# ─────────────────────────────────────────────────────────────

class _Unset:
    """Marker for a field no source has reported yet."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


UNSET = _Unset()


def is_unset(value):
    return value is UNSET


# ─────────────────────────────────────────────────────────────
# ENUMS
# ─────────────────────────────────────────────────────────────

class CardType(str, Enum):
    OSHI_HOLOMEM = "oshi_holomem"
    HOLOMEM = "holomem"
    STAFF = "staff"
    ITEM = "item"
    EVENT = "event"
    TOOL = "tool"
    MASCOT = "mascot"
    FAN = "fan"
    CHEER = "cheer"
    OTHER = "other"

    @property
    def is_support(self):
        return self in (CardType.STAFF, CardType.ITEM, CardType.EVENT,
                        CardType.TOOL, CardType.MASCOT, CardType.FAN)


class Color(str, Enum):
    WHITE = "white"
    GREEN = "green"
    RED = "red"
    BLUE = "blue"
    PURPLE = "purple"
    YELLOW = "yellow"
    COLORLESS = "colorless"


COLOR_ORDER = list(Color)


def sorted_colors(colors):
    return sorted(colors, key=COLOR_ORDER.index)


class BloomLevel(str, Enum):
    DEBUT = "debut"
    FIRST = "1st"
    SECOND = "2nd"
    SPOT = "spot"


class KeywordEffect(str, Enum):
    COLLAB = "collab"
    BLOOM = "bloom"
    GIFT = "gift"


# ─────────────────────────────────────────────────────────────
# LOCALIZED VALUES
# ─────────────────────────────────────────────────────────────

@dataclass
class Localized:
    """A value per language. None means "no value in that language"."""
    jp: object = None
    en: object = None

    @classmethod
    def of(cls, language, value):
        loc = cls()
        loc.set(language, value)
        return loc

    def value(self, language):
        if language == JAPANESE:
            return self.jp
        if language == ENGLISH:
            return self.en
        raise ValueError(f"Unknown language: {language!r}")

    def set(self, language, value):
        if language == JAPANESE:
            self.jp = value
        elif language == ENGLISH:
            self.en = value
        else:
            raise ValueError(f"Unknown language: {language!r}")

    def has_value(self):
        return any(self.value(lang) for lang in LANGUAGES)

    # Collection element protocol (see merger.merge_collection)
    def structure(self):
        return ()

    def copy_text(self, other, language):
        self.set(language, other.value(language))

    def to_dict(self):
        return {"jp": self.jp, "en": self.en}

    @classmethod
    def from_dict(cls, data):
        if data is None:
            return cls()
        if not isinstance(data, dict):
            # Older files stored a bare Japanese string
            return cls(jp=data)
        return cls(jp=data.get("jp"), en=data.get("en"))


def _copy_localized_text(target, source, language):
    """Copy one language of a Localized (possibly None) onto another."""
    if source is None:
        return target
    if target is None:
        target = Localized()
    target.set(language, source.value(language))
    return target


# ─────────────────────────────────────────────────────────────
# CARD TEXT STRUCTURES
# ─────────────────────────────────────────────────────────────

@dataclass
class OshiSkill:
    special: bool = False
    holo_power: str = ""
    name: Localized = field(default_factory=Localized)
    ability_text: Localized = field(default_factory=Localized)

    def structure(self):
        return (self.special, self.holo_power)

    def copy_text(self, other, language):
        self.name.set(language, other.name.value(language))
        self.ability_text.set(language, other.ability_text.value(language))

    def to_dict(self):
        return {
            "special": self.special,
            "holo_power": self.holo_power,
            "name": self.name.to_dict(),
            "ability_text": self.ability_text.to_dict(),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            special=bool(data.get("special", False)),
            holo_power=str(data.get("holo_power", "")),
            name=Localized.from_dict(data.get("name")),
            ability_text=Localized.from_dict(data.get("ability_text")),
        )


@dataclass
class Keyword:
    effect: KeywordEffect = KeywordEffect.COLLAB
    name: Localized = field(default_factory=Localized)
    ability_text: Localized = field(default_factory=Localized)

    def structure(self):
        return (self.effect,)

    def copy_text(self, other, language):
        self.name.set(language, other.name.value(language))
        self.ability_text.set(language, other.ability_text.value(language))

    def to_dict(self):
        return {
            "effect": self.effect.value,
            "name": self.name.to_dict(),
            "ability_text": self.ability_text.to_dict(),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            effect=KeywordEffect(data["effect"]),
            name=Localized.from_dict(data.get("name")),
            ability_text=Localized.from_dict(data.get("ability_text")),
        )


@dataclass
class Art:
    cheers: list = field(default_factory=list)
    power: str = ""
    advantage: Optional[tuple] = None   # (Color, amount)
    name: Localized = field(default_factory=Localized)
    ability_text: Optional[Localized] = None

    def structure(self):
        return (tuple(self.cheers), self.power, self.advantage,
                self.ability_text is not None)

    def copy_text(self, other, language):
        self.name.set(language, other.name.value(language))
        if self.ability_text is not None:
            self.ability_text = _copy_localized_text(
                self.ability_text, other.ability_text, language)

    def to_dict(self):
        return {
            "cheers": [c.value for c in self.cheers],
            "power": self.power,
            "advantage": ([self.advantage[0].value, self.advantage[1]]
                          if self.advantage else None),
            "name": self.name.to_dict(),
            "ability_text": (self.ability_text.to_dict()
                             if self.ability_text is not None else None),
        }

    @classmethod
    def from_dict(cls, data):
        advantage = data.get("advantage")
        ability_text = data.get("ability_text")
        return cls(
            cheers=[Color(c) for c in data.get("cheers", [])],
            power=str(data.get("power", "")),
            advantage=(Color(advantage[0]), int(advantage[1])) if advantage else None,
            name=Localized.from_dict(data.get("name")),
            ability_text=Localized.from_dict(ability_text) if ability_text is not None else None,
        )


# ─────────────────────────────────────────────────────────────
# ILLUSTRATIONS
# ─────────────────────────────────────────────────────────────

def _id_list(value):
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return [int(v) for v in value]
    return [int(value)]


@dataclass
class CardIllustration:
    card_number: str = ""
    manage_id: Localized = field(default_factory=Localized)   # lists of int
    rarity: str = ""
    img_path: Localized = field(default_factory=Localized)
    img_hash: str = ""
    img_last_modified: Optional[str] = None
    delta_art_index: Optional[int] = None
    yuyutei_sell_url: Optional[str] = None
    illustrator: Optional[str] = None   # "" = known to have no illustrator

    @property
    def released(self):
        return self.manage_id.has_value()

    def manage_ids(self, language):
        return list(self.manage_id.value(language) or [])

    def has_manage_id(self, language, manage_id):
        return manage_id in self.manage_ids(language)

    def add_manage_id(self, language, manage_id):
        ids = self.manage_ids(language)
        if manage_id not in ids:
            ids.append(manage_id)
            ids.sort()
        self.manage_id.set(language, ids)

    def remove_manage_id(self, language, manage_id):
        ids = [i for i in self.manage_ids(language) if i != manage_id]
        self.manage_id.set(language, ids or None)

    def sort_key(self):
        jp_ids = self.manage_ids(JAPANESE)
        en_ids = self.manage_ids(ENGLISH)
        inf = float("inf")
        return (
            not self.released,
            min(jp_ids) if jp_ids else inf,
            min(en_ids) if en_ids else inf,
        )

    def label(self):
        """Short display id, e.g. JP-532, EN-12 or <?> when unreleased."""
        for lang in LANGUAGES:
            ids = self.manage_ids(lang)
            if ids:
                return f"{lang.upper()}-{ids[0]}"
        return "<?>"

    def to_dict(self):
        return {
            "card_number": self.card_number,
            "manage_id": self.manage_id.to_dict(),
            "rarity": self.rarity,
            "img_path": self.img_path.to_dict(),
            "img_hash": self.img_hash,
            "img_last_modified": self.img_last_modified,
            "delta_art_index": self.delta_art_index,
            "yuyutei_sell_url": self.yuyutei_sell_url,
            "illustrator": self.illustrator,
        }

    @classmethod
    def from_dict(cls, data):
        manage_id = data.get("manage_id")
        if isinstance(manage_id, dict):
            manage_id = Localized(jp=_id_list(manage_id.get("jp")),
                                  en=_id_list(manage_id.get("en")))
        else:
            manage_id = Localized(jp=_id_list(manage_id))
        return cls(
            card_number=data.get("card_number", ""),
            manage_id=manage_id,
            rarity=data.get("rarity", ""),
            img_path=Localized.from_dict(data.get("img_path")),
            img_hash=data.get("img_hash", "") or "",
            img_last_modified=data.get("img_last_modified"),
            delta_art_index=data.get("delta_art_index"),
            yuyutei_sell_url=data.get("yuyutei_sell_url"),
            illustrator=data.get("illustrator"),
        )


# ─────────────────────────────────────────────────────────────
# CARDS
# ─────────────────────────────────────────────────────────────

@dataclass
class Card:
    card_number: str = ""
    name: Localized = field(default_factory=Localized)
    ability_text: Localized = field(default_factory=Localized)
    card_type: object = UNSET           # CardType
    colors: object = UNSET              # list[Color]
    life: object = UNSET                # int (oshi)
    hp: object = UNSET                  # int (holomem)
    bloom_level: object = UNSET         # BloomLevel or None
    buzz: object = UNSET                # bool
    limited: object = UNSET             # bool
    tags: object = UNSET                # list[Localized]
    baton_pass: object = UNSET          # list[Color]
    oshi_skills: object = UNSET         # list[OshiSkill]
    keywords: object = UNSET            # list[Keyword]
    arts: object = UNSET                # list[Art]
    extra: object = UNSET               # Localized or None
    max_amount: Localized = field(default_factory=Localized)
    illustrations: list = field(default_factory=list)

    @property
    def released(self):
        """A card is released once any of its illustrations has an identifier."""
        return any(i.released for i in self.illustrations)

    def sort_illustrations(self):
        # Oldest identifier first, unreleased slots last (stable)
        self.illustrations.sort(key=CardIllustration.sort_key)

    def to_dict(self):
        data = {
            "card_number": self.card_number,
            "name": self.name.to_dict(),
            "ability_text": self.ability_text.to_dict(),
        }
        if not is_unset(self.card_type):
            data["card_type"] = self.card_type.value
        if not is_unset(self.colors):
            data["colors"] = [c.value for c in self.colors]
        for key in ("life", "hp", "buzz", "limited"):
            value = getattr(self, key)
            if not is_unset(value):
                data[key] = value
        if not is_unset(self.bloom_level):
            data["bloom_level"] = self.bloom_level.value if self.bloom_level else None
        if not is_unset(self.tags):
            data["tags"] = [t.to_dict() for t in self.tags]
        if not is_unset(self.baton_pass):
            data["baton_pass"] = [c.value for c in self.baton_pass]
        for key in ("oshi_skills", "keywords", "arts"):
            value = getattr(self, key)
            if not is_unset(value):
                data[key] = [v.to_dict() for v in value]
        if not is_unset(self.extra):
            data["extra"] = self.extra.to_dict() if self.extra is not None else None
        data["max_amount"] = self.max_amount.to_dict()
        data["illustrations"] = [i.to_dict() for i in self.illustrations]
        return data

    @classmethod
    def from_dict(cls, data):
        card = cls(
            card_number=data.get("card_number", ""),
            name=Localized.from_dict(data.get("name")),
            ability_text=Localized.from_dict(data.get("ability_text")),
            max_amount=Localized.from_dict(data.get("max_amount")),
            illustrations=[CardIllustration.from_dict(i)
                           for i in data.get("illustrations", [])],
        )
        if "card_type" in data:
            card.card_type = CardType(data["card_type"])
        if "colors" in data:
            card.colors = [Color(c) for c in data["colors"]]
        for key in ("life", "hp", "buzz", "limited"):
            if key in data:
                setattr(card, key, data[key])
        if "bloom_level" in data:
            value = data["bloom_level"]
            card.bloom_level = BloomLevel(value) if value else None
        if "tags" in data:
            card.tags = [Localized.from_dict(t) for t in data["tags"]]
        if "baton_pass" in data:
            card.baton_pass = [Color(c) for c in data["baton_pass"]]
        if "oshi_skills" in data:
            card.oshi_skills = [OshiSkill.from_dict(s) for s in data["oshi_skills"]]
        if "keywords" in data:
            card.keywords = [Keyword.from_dict(k) for k in data["keywords"]]
        if "arts" in data:
            card.arts = [Art.from_dict(a) for a in data["arts"]]
        if "extra" in data:
            extra = data["extra"]
            card.extra = Localized.from_dict(extra) if extra is not None else None
        card.sort_illustrations()
        return card
