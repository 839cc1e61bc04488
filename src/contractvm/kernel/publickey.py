"""secp256k1 public key codec.

Supported encodings:
- JWK-style object: {"kty": "EC", "crv": "secp256k1", "alg": "ES256K", "use": "sig", "x": ..., "y": ...}
  with base64url coordinates
- 64-byte hex (X || Y, big-endian, uncompressed, no prefix byte)
- 33-byte hex (compressed: 0x02/0x03 parity byte + X)
- source literal: "eth#<64-byte or 33-byte hex>"

Keys are normalized to (curve, X, Y); equality is coordinate equality.
"""

import base64
import binascii
from dataclasses import dataclass
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives.asymmetric import ec

from .errors import KeyFormatError

CURVE = "secp256k1"
KEY_TYPE = "EC"
ALGORITHM = "ES256K"
KEY_USE = "sig"
LITERAL_SCHEME = "eth"

_COORDINATE_SIZE = 32


def _b64url_decode(text: str, name: str) -> bytes:
    if not isinstance(text, str):
        raise KeyFormatError(f"Coordinate '{name}' must be a base64url string")
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as e:
        raise KeyFormatError(f"Coordinate '{name}' is not valid base64url: {e}")


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii")


def _hex_decode(text: str) -> bytes:
    if text.startswith(("0x", "0X")):
        text = text[2:]
    try:
        return bytes.fromhex(text)
    except ValueError as e:
        raise KeyFormatError(f"Key is not valid hex: {e}")


def _check_on_curve(x: bytes, y: bytes) -> None:
    numbers = ec.EllipticCurvePublicNumbers(
        int.from_bytes(x, "big"), int.from_bytes(y, "big"), ec.SECP256K1()
    )
    try:
        numbers.public_key()
    except ValueError:
        raise KeyFormatError("Point is not on the secp256k1 curve")


@dataclass(frozen=True)
class Key:
    """A normalized secp256k1 public key."""
    x: bytes
    y: bytes
    curve: str = CURVE

    @classmethod
    def null(cls) -> "Key":
        """The all-zero key used as the default value of PublicKey fields."""
        return cls(x=bytes(_COORDINATE_SIZE), y=bytes(_COORDINATE_SIZE))

    @property
    def is_null(self) -> bool:
        return not any(self.x) and not any(self.y)

    @classmethod
    def from_coordinates(cls, x: bytes, y: bytes) -> "Key":
        if len(x) != _COORDINATE_SIZE or len(y) != _COORDINATE_SIZE:
            raise KeyFormatError(
                f"Coordinates must be {_COORDINATE_SIZE} bytes, got {len(x)} and {len(y)}"
            )
        _check_on_curve(x, y)
        return cls(x=bytes(x), y=bytes(y))

    @classmethod
    def from_json(cls, obj: Any) -> "Key":
        """Decode the JWK-style object form."""
        if not isinstance(obj, dict):
            raise KeyFormatError(f"Public key must be an object, got {type(obj).__name__}")
        kty = obj.get("kty", KEY_TYPE)
        crv = obj.get("crv")
        alg = obj.get("alg", ALGORITHM)
        use = obj.get("use", KEY_USE)
        if kty != KEY_TYPE or crv != CURVE or alg != ALGORITHM or use != KEY_USE:
            raise KeyFormatError(
                f"Unsupported key: kty={kty!r} crv={crv!r} alg={alg!r} use={use!r} "
                f"(expected {KEY_TYPE}/{CURVE}/{ALGORITHM}/{KEY_USE})"
            )
        if "x" not in obj or "y" not in obj:
            raise KeyFormatError("Public key is missing 'x' or 'y'")
        return cls.from_coordinates(_b64url_decode(obj["x"], "x"), _b64url_decode(obj["y"], "y"))

    def to_json(self) -> Dict[str, str]:
        return {
            "kty": KEY_TYPE,
            "crv": self.curve,
            "alg": ALGORITHM,
            "use": KEY_USE,
            "x": _b64url_encode(self.x),
            "y": _b64url_encode(self.y),
        }

    @classmethod
    def from_hex(cls, text: str) -> "Key":
        """Decode either the 64-byte uncompressed or 33-byte compressed hex form."""
        data = _hex_decode(text.strip())
        if len(data) == 2 * _COORDINATE_SIZE:
            return cls.from_coordinates(data[:_COORDINATE_SIZE], data[_COORDINATE_SIZE:])
        if len(data) == _COORDINATE_SIZE + 1:
            if data[0] not in (0x02, 0x03):
                raise KeyFormatError(f"Invalid compressed key prefix 0x{data[0]:02x}")
            try:
                public_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), data)
            except ValueError:
                raise KeyFormatError("Point is not on the secp256k1 curve")
            numbers = public_key.public_numbers()
            return cls(
                x=numbers.x.to_bytes(_COORDINATE_SIZE, "big"),
                y=numbers.y.to_bytes(_COORDINATE_SIZE, "big"),
            )
        raise KeyFormatError(f"Key must be 64 or 33 bytes, got {len(data)}")

    def to_64_byte_hex(self) -> str:
        return (self.x + self.y).hex()

    def to_compressed_33_byte_hex(self) -> str:
        prefix = 0x02 + (self.y[-1] & 1)
        return (bytes([prefix]) + self.x).hex()

    @classmethod
    def parse_literal(cls, text: str) -> "Key":
        """Parse the source-embedded form, e.g. ``eth#<hex>``."""
        scheme, sep, payload = text.partition("#")
        if not sep:
            raise KeyFormatError(f"Key literal '{text}' is missing the '#' separator")
        if scheme != LITERAL_SCHEME:
            raise KeyFormatError(f"Unsupported key literal scheme '{scheme}'")
        return cls.from_hex(payload)

    def to_literal(self) -> str:
        return f"{LITERAL_SCHEME}#{self.to_64_byte_hex()}"


def coerce_key(value: Any) -> Optional[Key]:
    """Accept a Key, its JSON object form, a hex string or None."""
    if value is None or isinstance(value, Key):
        return value
    if isinstance(value, dict):
        return Key.from_json(value)
    if isinstance(value, str):
        if "#" in value:
            return Key.parse_literal(value)
        return Key.from_hex(value)
    raise KeyFormatError(f"Cannot interpret {type(value).__name__} as a public key")
