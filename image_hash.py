"""
image_hash.py
Multi-channel perceptual fingerprint for card artwork.

A fingerprint is four dHash values, one per channel, each base64 encoded
and joined with "|":

    red | green | blue | inverse saturation

The inverse saturation channel (255 - S from RGB→HSV) separates foil and
holo printings whose RGB gradients are otherwise almost identical.

Distance between two fingerprints:
  - Hamming distance per channel
  - any channel distance <= 2 counts as 1 (compression / resampling noise)
  - channel distances are multiplied, so one very different channel is
    enough to reject a pair

Typical values (see config.DIST_TOLERANCE_*):
  - 1:         identical or re-encoded image
  - 1-600:     same print, different source
  - 600-6000:  same artwork, manual crop / physical scan
  - 10000+:    different artwork
"""

import base64
import io
import math

import cv2
import imagehash
import numpy as np
from PIL import Image

from config import HASH_NOISE_FLOOR, HASH_SEPARATOR, HASH_SIZE

# "Never matches"
MAX_DISTANCE = 2 ** 64 - 1


class DecodeError(Exception):
    """Raised when image bytes cannot be decoded to pixels."""


# ============================================
# Decoding
# ============================================

def decode_image(data, declared_format=None):
    """
    Decode raw image bytes to an RGB PIL image.

    Args:
        data: encoded image bytes (webp, png, jpeg, ...)
        declared_format: optional PIL format name to restrict detection to

    Raises:
        DecodeError: bytes are empty, truncated or not an image.
    """
    if not data:
        raise DecodeError("empty image data")
    formats = [declared_format.upper()] if declared_format else None
    try:
        img = Image.open(io.BytesIO(data), formats=formats)
        img.load()
        return img.convert("RGB")
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise DecodeError(str(e)) from e


# ============================================
# Hashing
# ============================================

def _encode_channel(channel_hash):
    bits = np.packbits(channel_hash.hash.flatten())
    return base64.b64encode(bits.tobytes()).decode("ascii")


def _decode_channel(text):
    raw = base64.b64decode(text, validate=True)
    bits = np.unpackbits(np.frombuffer(raw, dtype=np.uint8)).astype(bool)
    side = math.isqrt(bits.size)
    if side == 0 or side * side != bits.size:
        raise ValueError(f"not a square hash: {bits.size} bits")
    return imagehash.ImageHash(bits.reshape(side, side))


def channel_images(img):
    """Split an RGB image into its red, green, blue and inverse saturation channels."""
    rgb = np.asarray(img.convert("RGB"))
    hsv = cv2.cvtColor(rgb, cv2.COLOR_RGB2HSV)
    inv_saturation = 255 - hsv[:, :, 1]
    return [
        Image.fromarray(np.ascontiguousarray(rgb[:, :, 0])),
        Image.fromarray(np.ascontiguousarray(rgb[:, :, 1])),
        Image.fromarray(np.ascontiguousarray(rgb[:, :, 2])),
        Image.fromarray(np.ascontiguousarray(inv_saturation)),
    ]


def to_image_hash(img):
    """Compute the "r|g|b|s" fingerprint of a PIL image."""
    return HASH_SEPARATOR.join(
        _encode_channel(imagehash.dhash(channel, hash_size=HASH_SIZE))
        for channel in channel_images(img)
    )


def bytes_to_image_hash(data, declared_format=None):
    return to_image_hash(decode_image(data, declared_format))


def path_to_image_hash(path):
    with open(path, "rb") as f:
        return bytes_to_image_hash(f.read())


# ============================================
# Distance
# ============================================

def dist_hash(hash_a, hash_b):
    """
    Distance between two fingerprints, MAX_DISTANCE when they can't be compared.

    Empty, malformed or incompatible fingerprints (different channel
    count or hash size) never match anything, not even each other.
    """
    if not hash_a or not hash_b:
        return MAX_DISTANCE
    channels_a = hash_a.split(HASH_SEPARATOR)
    channels_b = hash_b.split(HASH_SEPARATOR)
    if len(channels_a) != len(channels_b):
        return MAX_DISTANCE

    dist = 1
    try:
        for a, b in zip(channels_a, channels_b):
            channel_dist = int(_decode_channel(a) - _decode_channel(b))
            dist *= 1 if channel_dist <= HASH_NOISE_FLOOR else channel_dist
    except (ValueError, TypeError):
        # bad base64, or hashes of different sizes
        return MAX_DISTANCE
    return dist


def is_similar(hash_a, hash_b, tolerance):
    return dist_hash(hash_a, hash_b) <= tolerance
