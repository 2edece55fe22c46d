"""Shared fixtures: synthetic card images and fingerprints."""

import io

import imagehash
import numpy as np
import pytest
from PIL import Image

from config import HASH_SEPARATOR
from database import CardDatabase
from image_hash import _encode_channel
from models import Card, CardIllustration, Localized


def random_card_image(seed, size=(63, 88)):
    """Noise image; different seeds give unrelated fingerprints."""
    rng = np.random.default_rng(seed)
    return Image.fromarray(rng.integers(0, 256, size=(size[1], size[0], 3), dtype=np.uint8))


def png_bytes(img):
    buf = io.BytesIO()
    img.save(buf, "PNG")
    return buf.getvalue()


def fingerprint(flips=(0, 0, 0, 0), seed=0):
    """
    Fingerprint built bit by bit.

    Same seed → same base bits; flips[i] bits of channel i are inverted,
    so the distance to the unflipped hash is predictable.
    """
    rng = np.random.default_rng(seed)
    channels = []
    for n in flips:
        bits = rng.integers(0, 2, size=(8, 8)).astype(bool)
        flat = bits.reshape(-1)
        flat[:n] = ~flat[:n]
        channels.append(_encode_channel(imagehash.ImageHash(flat.reshape(8, 8))))
    return HASH_SEPARATOR.join(channels)


def released_illustration(card_number, manage_id, rarity="C", img_hash="", img_path=None):
    return CardIllustration(
        card_number=card_number,
        manage_id=Localized(jp=[manage_id]),
        rarity=rarity,
        img_path=Localized(jp=img_path),
        img_hash=img_hash,
    )


@pytest.fixture
def make_image():
    return random_card_image


@pytest.fixture
def make_png():
    return lambda seed: png_bytes(random_card_image(seed))


@pytest.fixture
def encode_png():
    return png_bytes


@pytest.fixture
def make_hash():
    return fingerprint


@pytest.fixture
def make_released():
    return released_illustration


@pytest.fixture
def small_db():
    """Two released cards, one with an extra unreleased slot."""
    sora = Card(card_number="hSD01-001", name=Localized(jp="ときのそら"))
    sora.illustrations = [
        released_illustration("hSD01-001", 1, rarity="OSR", img_path="hSD01/hSD01-001_OSR.webp"),
        CardIllustration(card_number="hSD01-001", rarity="SEC"),
    ]
    azki = Card(card_number="hSD01-002", name=Localized(jp="AZKi"))
    azki.illustrations = [
        released_illustration("hSD01-002", 2, rarity="OSR", img_path="hSD01/hSD01-002_OSR.webp"),
    ]
    return CardDatabase([sora, azki])
