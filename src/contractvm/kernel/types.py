"""Type and value model shared by the compiler and the prover runtime.

Types are pydantic models (they end up inside the ABI artifact); values are
frozen dataclasses produced per invocation.
"""

import base64
import binascii
import math
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import InputError, KeyFormatError
from .publickey import Key


class Primitive(str, Enum):
    BOOLEAN = "boolean"
    STRING = "string"
    BYTES = "bytes"
    UINT32 = "u32"
    UINT64 = "u64"
    INT32 = "i32"
    INT64 = "i64"
    FLOAT32 = "f32"
    FLOAT64 = "f64"


# Source-level aliases resolved by the compiler
PRIMITIVE_ALIASES = {"number": Primitive.FLOAT64}

INTEGER_RANGES = {
    Primitive.UINT32: (0, 2**32 - 1),
    Primitive.UINT64: (0, 2**64 - 1),
    Primitive.INT32: (-(2**31), 2**31 - 1),
    Primitive.INT64: (-(2**63), 2**63 - 1),
}
FLOATS = (Primitive.FLOAT32, Primitive.FLOAT64)
NUMERICS = tuple(INTEGER_RANGES) + FLOATS


class PrimitiveType(BaseModel):
    kind: Literal["primitive"] = "primitive"
    primitive: Primitive

    model_config = ConfigDict(frozen=True, extra="forbid")


class PublicKeyType(BaseModel):
    kind: Literal["publickey"] = "publickey"

    model_config = ConfigDict(frozen=True, extra="forbid")


class ContractReferenceType(BaseModel):
    """A reference to another record, carried as its raw identifier bytes."""
    kind: Literal["contractreference"] = "contractreference"
    contract: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class ArrayType(BaseModel):
    kind: Literal["array"] = "array"
    element: "Type"

    model_config = ConfigDict(frozen=True, extra="forbid")


class StructField(BaseModel):
    name: str
    type: "Type"

    model_config = ConfigDict(frozen=True, extra="forbid")


class StructType(BaseModel):
    kind: Literal["struct"] = "struct"
    name: str
    fields: Tuple[StructField, ...]

    model_config = ConfigDict(frozen=True, extra="forbid")

    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def field_type(self, name: str) -> Optional["Type"]:
        for f in self.fields:
            if f.name == name:
                return f.type
        return None

    def field_index(self, name: str) -> int:
        for i, f in enumerate(self.fields):
            if f.name == name:
                return i
        raise KeyError(name)


Type = Annotated[
    Union[PrimitiveType, PublicKeyType, ContractReferenceType, ArrayType, StructType],
    Field(discriminator="kind"),
]

ArrayType.model_rebuild()
StructField.model_rebuild()
StructType.model_rebuild()


BOOLEAN = PrimitiveType(primitive=Primitive.BOOLEAN)
STRING = PrimitiveType(primitive=Primitive.STRING)
BYTES = PrimitiveType(primitive=Primitive.BYTES)
UINT32 = PrimitiveType(primitive=Primitive.UINT32)
UINT64 = PrimitiveType(primitive=Primitive.UINT64)
INT32 = PrimitiveType(primitive=Primitive.INT32)
INT64 = PrimitiveType(primitive=Primitive.INT64)
FLOAT32 = PrimitiveType(primitive=Primitive.FLOAT32)
FLOAT64 = PrimitiveType(primitive=Primitive.FLOAT64)
PUBLIC_KEY = PublicKeyType()


def primitive_of(t: Any) -> Optional[Primitive]:
    return t.primitive if isinstance(t, PrimitiveType) else None


def is_numeric(t: Any) -> bool:
    return primitive_of(t) in NUMERICS


def is_integer(t: Any) -> bool:
    return primitive_of(t) in INTEGER_RANGES


def describe_type(t: Any) -> str:
    """Render a type the way it is written in source."""
    if t is None:
        return "void"
    if isinstance(t, PrimitiveType):
        return t.primitive.value
    if isinstance(t, PublicKeyType):
        return "PublicKey"
    if isinstance(t, ContractReferenceType):
        return t.contract
    if isinstance(t, ArrayType):
        return f"{describe_type(t.element)}[]"
    if isinstance(t, StructType):
        inner = " ".join(f"{f.name}: {describe_type(f.type)};" for f in t.fields)
        return f"{{ {inner} }}" if inner else "{}"
    return repr(t)


# ---------------------------------------------------------------------------
# Values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BooleanValue:
    value: bool


@dataclass(frozen=True)
class StringValue:
    value: str


@dataclass(frozen=True)
class BytesValue:
    value: bytes


@dataclass(frozen=True)
class UInt32Value:
    value: int


@dataclass(frozen=True)
class UInt64Value:
    value: int


@dataclass(frozen=True)
class Int32Value:
    value: int


@dataclass(frozen=True)
class Int64Value:
    value: int


@dataclass(frozen=True)
class Float32Value:
    value: float


@dataclass(frozen=True)
class Float64Value:
    value: float


@dataclass(frozen=True)
class PublicKeyValue:
    value: Key


@dataclass(frozen=True)
class ContractReferenceValue:
    """Only the referenced record's identifier, never its fields."""
    value: bytes


@dataclass(frozen=True)
class ArrayValue:
    items: Tuple[Any, ...]

    def __post_init__(self):
        object.__setattr__(self, "items", tuple(self.items))


@dataclass(frozen=True)
class StructValue:
    fields: Tuple[Tuple[str, Any], ...]

    def __post_init__(self):
        object.__setattr__(self, "fields", tuple((name, value) for name, value in self.fields))

    def get(self, name: str) -> Any:
        for field_name, value in self.fields:
            if field_name == name:
                return value
        raise KeyError(name)


Value = Union[
    BooleanValue, StringValue, BytesValue,
    UInt32Value, UInt64Value, Int32Value, Int64Value, Float32Value, Float64Value,
    PublicKeyValue, ContractReferenceValue, ArrayValue, StructValue,
]

_PRIMITIVE_VALUE_CLASSES = {
    Primitive.BOOLEAN: BooleanValue,
    Primitive.STRING: StringValue,
    Primitive.BYTES: BytesValue,
    Primitive.UINT32: UInt32Value,
    Primitive.UINT64: UInt64Value,
    Primitive.INT32: Int32Value,
    Primitive.INT64: Int64Value,
    Primitive.FLOAT32: Float32Value,
    Primitive.FLOAT64: Float64Value,
}


def round_f32(value: float) -> float:
    """Round a Python float to single precision."""
    try:
        return struct.unpack(">f", struct.pack(">f", value))[0]
    except OverflowError:
        return math.copysign(math.inf, value)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

def default_value(t: Any) -> Any:
    """Type-appropriate zero/empty value."""
    if isinstance(t, PrimitiveType):
        p = t.primitive
        if p == Primitive.BOOLEAN:
            return BooleanValue(False)
        if p == Primitive.STRING:
            return StringValue("")
        if p == Primitive.BYTES:
            return BytesValue(b"")
        if p in FLOATS:
            return _PRIMITIVE_VALUE_CLASSES[p](0.0)
        return _PRIMITIVE_VALUE_CLASSES[p](0)
    if isinstance(t, PublicKeyType):
        return PublicKeyValue(Key.null())
    if isinstance(t, ContractReferenceType):
        return ContractReferenceValue(b"")
    if isinstance(t, ArrayType):
        return ArrayValue(())
    if isinstance(t, StructType):
        return StructValue(tuple((f.name, default_value(f.type)) for f in t.fields))
    raise TypeError(f"Unknown type: {t!r}")


# ---------------------------------------------------------------------------
# JSON <-> Value
# ---------------------------------------------------------------------------

def _integer_from_json(p: Primitive, data: Any, path: str) -> int:
    if isinstance(data, bool):
        raise InputError(path, f"expected {p.value}, got boolean")
    if isinstance(data, str):
        try:
            data = int(data, 10)
        except ValueError:
            raise InputError(path, f"expected {p.value}, got string {data!r}")
    if isinstance(data, float):
        if not data.is_integer():
            raise InputError(path, f"expected {p.value}, got non-integer {data!r}")
        data = int(data)
    if not isinstance(data, int):
        raise InputError(path, f"expected {p.value}, got {type(data).__name__}")
    low, high = INTEGER_RANGES[p]
    if not low <= data <= high:
        raise InputError(path, f"{data} is out of range for {p.value}")
    return data


def value_from_json(t: Any, data: Any, path: str = "value") -> Any:
    """Decode JSON-like data into a Value of type ``t``.

    Raises InputError naming ``path`` when the data does not fit the type.
    """
    if isinstance(t, PrimitiveType):
        p = t.primitive
        if p == Primitive.BOOLEAN:
            if not isinstance(data, bool):
                raise InputError(path, f"expected boolean, got {type(data).__name__}")
            return BooleanValue(data)
        if p == Primitive.STRING:
            if not isinstance(data, str):
                raise InputError(path, f"expected string, got {type(data).__name__}")
            return StringValue(data)
        if p == Primitive.BYTES:
            if not isinstance(data, str):
                raise InputError(path, "expected base64 string for bytes")
            try:
                return BytesValue(base64.b64decode(data.encode("ascii"), validate=True))
            except (binascii.Error, UnicodeEncodeError) as e:
                raise InputError(path, f"invalid base64: {e}")
        if p in FLOATS:
            if isinstance(data, bool) or not isinstance(data, (int, float)):
                raise InputError(path, f"expected {p.value}, got {type(data).__name__}")
            value = float(data)
            if p == Primitive.FLOAT32:
                value = round_f32(value)
            return _PRIMITIVE_VALUE_CLASSES[p](value)
        return _PRIMITIVE_VALUE_CLASSES[p](_integer_from_json(p, data, path))

    if isinstance(t, PublicKeyType):
        if data is None:
            return PublicKeyValue(Key.null())
        try:
            return PublicKeyValue(Key.from_json(data))
        except KeyFormatError as e:
            raise InputError(path, str(e))

    if isinstance(t, ContractReferenceType):
        if isinstance(data, dict):
            data = data.get("id")
        if not isinstance(data, str):
            raise InputError(path, f"expected a reference to {t.contract} (string id or object with 'id')")
        return ContractReferenceValue(data.encode("utf-8"))

    if isinstance(t, ArrayType):
        if not isinstance(data, list):
            raise InputError(path, f"expected array, got {type(data).__name__}")
        return ArrayValue(tuple(
            value_from_json(t.element, item, f"{path}[{i}]") for i, item in enumerate(data)
        ))

    if isinstance(t, StructType):
        if not isinstance(data, dict):
            raise InputError(path, f"expected object, got {type(data).__name__}")
        expected = t.field_names()
        unknown = [k for k in data if k not in expected]
        if unknown:
            raise InputError(f"{path}.{unknown[0]}", f"unknown field for {t.name or 'object'}")
        fields = []
        for f in t.fields:
            if f.name not in data:
                raise InputError(f"{path}.{f.name}", "missing field")
            fields.append((f.name, value_from_json(f.type, data[f.name], f"{path}.{f.name}")))
        return StructValue(tuple(fields))

    raise TypeError(f"Unknown type: {t!r}")


def value_to_json(value: Any) -> Any:
    """Encode a Value as JSON-compatible data."""
    if isinstance(value, BytesValue):
        return base64.b64encode(value.value).decode("ascii")
    if isinstance(value, PublicKeyValue):
        return None if value.value.is_null else value.value.to_json()
    if isinstance(value, ContractReferenceValue):
        return {"id": value.value.decode("utf-8", errors="replace")}
    if isinstance(value, ArrayValue):
        return [value_to_json(item) for item in value.items]
    if isinstance(value, StructValue):
        return {name: value_to_json(item) for name, item in value.fields}
    return value.value


# ---------------------------------------------------------------------------
# Value <-> VM-native representation
# ---------------------------------------------------------------------------

def to_native(value: Any) -> Any:
    """Convert a Value to the plain Python object the VM operates on."""
    if isinstance(value, ArrayValue):
        return [to_native(item) for item in value.items]
    if isinstance(value, StructValue):
        return {name: to_native(item) for name, item in value.fields}
    return value.value


def from_native(t: Any, native: Any) -> Any:
    """Convert a VM-native object back to a Value of type ``t``."""
    if isinstance(t, PrimitiveType):
        return _PRIMITIVE_VALUE_CLASSES[t.primitive](native)
    if isinstance(t, PublicKeyType):
        return PublicKeyValue(native if native is not None else Key.null())
    if isinstance(t, ContractReferenceType):
        return ContractReferenceValue(native)
    if isinstance(t, ArrayType):
        return ArrayValue(tuple(from_native(t.element, item) for item in native))
    if isinstance(t, StructType):
        return StructValue(tuple((f.name, from_native(f.type, native[f.name])) for f in t.fields))
    raise TypeError(f"Unknown type: {t!r}")


