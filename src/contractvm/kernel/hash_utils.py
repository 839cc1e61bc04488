"""Hash utilities: canonical JSON fingerprints and field commitments.

Canonical JSON rules (ABI fingerprints):
- Object keys sorted recursively
- Arrays preserve order
- Floats BANNED (hard validation error)
- Strings normalized to NFC
- Non-JSON types forbidden

Commitments hash a canonical binary encoding of a value (type tag plus
length-prefixed payload) with SHA-256 and split the 32-byte digest into four
big-endian unsigned 64-bit words.
"""

import hashlib
import json
import struct
import unicodedata
from typing import Any, Tuple, Union

from pydantic import BaseModel

from .types import (
    ArrayValue,
    BooleanValue,
    BytesValue,
    ContractReferenceValue,
    Float32Value,
    Float64Value,
    Int32Value,
    Int64Value,
    PublicKeyValue,
    StringValue,
    StructValue,
    UInt32Value,
    UInt64Value,
)

Digest = Tuple[int, int, int, int]

FIELD_DOMAIN = b"contractvm/field/v1\x00"
VALUE_DOMAIN = b"contractvm/value/v1\x00"


class CanonicalizationError(ValueError):
    """Raised when an object cannot be canonicalized."""
    pass


def _normalize_string(s: str) -> str:
    return unicodedata.normalize("NFC", s)


def _validate_json_type(obj: Any, path: str = "") -> None:
    """Validate that object contains only JSON-compatible types.

    Raises CanonicalizationError if non-JSON types are found.
    """
    if obj is None or isinstance(obj, (bool, int, str)):
        return
    if isinstance(obj, float):
        raise CanonicalizationError(f"Floats are not allowed (at {path or '<root>'})")
    if isinstance(obj, dict):
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"Dictionary keys must be strings at {path}, got {type(key).__name__}"
                )
            _validate_json_type(value, f"{path}.{key}" if path else key)
        return
    if isinstance(obj, (list, tuple)):
        for i, item in enumerate(obj):
            _validate_json_type(item, f"{path}[{i}]" if path else f"[{i}]")
        return
    raise CanonicalizationError(
        f"Non-JSON type at {path or '<root>'}: {type(obj).__name__}. "
        f"Only None, bool, int, str, dict, and list are allowed."
    )


def _canonicalize_value(obj: Any) -> Any:
    if isinstance(obj, str):
        return _normalize_string(obj)
    if isinstance(obj, dict):
        return {_normalize_string(k): _canonicalize_value(v) for k, v in sorted(obj.items())}
    if isinstance(obj, (list, tuple)):
        return [_canonicalize_value(item) for item in obj]
    return obj


def canonicalize_json(obj: Any) -> str:
    """Canonicalize a JSON-serializable object to a stable string representation.

    Raises:
        CanonicalizationError: If object contains floats or non-JSON types
    """
    _validate_json_type(obj)
    return json.dumps(_canonicalize_value(obj), sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def hash_impl(content: Union[str, bytes]) -> str:
    """SHA256 of raw content, prefixed with "sha256:"."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


def hash_abi(abi: BaseModel) -> str:
    """SHA256 of the canonical JSON form of an ABI, prefixed with "sha256:"."""
    canonical = canonicalize_json(abi.model_dump(mode="json"))
    return hash_impl(canonical)


# ---------------------------------------------------------------------------
# Value encoding and commitments
# ---------------------------------------------------------------------------

def _length_prefixed(data: bytes) -> bytes:
    return struct.pack(">Q", len(data)) + data


def encode_value(value: Any) -> bytes:
    """Canonical binary encoding of a Value."""
    if isinstance(value, BooleanValue):
        return b"\x01" + (b"\x01" if value.value else b"\x00")
    if isinstance(value, StringValue):
        return b"\x02" + _length_prefixed(value.value.encode("utf-8"))
    if isinstance(value, BytesValue):
        return b"\x03" + _length_prefixed(value.value)
    if isinstance(value, UInt32Value):
        return b"\x04" + struct.pack(">I", value.value)
    if isinstance(value, UInt64Value):
        return b"\x05" + struct.pack(">Q", value.value)
    if isinstance(value, Int32Value):
        return b"\x06" + struct.pack(">i", value.value)
    if isinstance(value, Int64Value):
        return b"\x07" + struct.pack(">q", value.value)
    if isinstance(value, Float32Value):
        return b"\x08" + struct.pack(">f", value.value)
    if isinstance(value, Float64Value):
        return b"\x09" + struct.pack(">d", value.value)
    if isinstance(value, PublicKeyValue):
        return b"\x0a" + value.value.x + value.value.y
    if isinstance(value, ContractReferenceValue):
        return b"\x0b" + _length_prefixed(value.value)
    if isinstance(value, ArrayValue):
        return b"\x0c" + struct.pack(">Q", len(value.items)) + b"".join(encode_value(v) for v in value.items)
    if isinstance(value, StructValue):
        parts = [_length_prefixed(name.encode("utf-8")) + encode_value(v) for name, v in value.fields]
        return b"\x0d" + struct.pack(">Q", len(parts)) + b"".join(parts)
    raise TypeError(f"Cannot encode {type(value).__name__}")


def digest_words(digest: bytes) -> Digest:
    """Split a 32-byte digest into four big-endian u64 words."""
    if len(digest) != 32:
        raise ValueError(f"Expected a 32-byte digest, got {len(digest)}")
    return struct.unpack(">4Q", digest)


def commit_field(contract: str, field: str, salt: int, value: Any) -> Digest:
    """Commitment to one field of a record: (contract, field, salt, value)."""
    h = hashlib.sha256()
    h.update(FIELD_DOMAIN)
    h.update(_length_prefixed(contract.encode("utf-8")))
    h.update(_length_prefixed(field.encode("utf-8")))
    h.update(struct.pack(">Q", salt))
    h.update(encode_value(value))
    return digest_words(h.digest())


def commit_value(value: Any) -> Digest:
    """Commitment to a bare value (used for return values)."""
    return digest_words(hashlib.sha256(VALUE_DOMAIN + encode_value(value)).digest())
