"""ABI: the compiled interface description for one (contract, function) pair.

Authorization policies are resolved once at compile time into plain data and
stored on the ABI, so the runtime never re-derives them from declarations.
"""

from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import KeyFormatError
from .publickey import Key
from .types import StructType, Type

READ_AUTH_FUNCTION = ".readAuth"


class Anyone(BaseModel):
    """Any caller, including none."""
    kind: Literal["anyone"] = "anyone"

    model_config = ConfigDict(frozen=True, extra="forbid")


class Denied(BaseModel):
    """No caller."""
    kind: Literal["denied"] = "denied"

    model_config = ConfigDict(frozen=True, extra="forbid")


class FieldMatch(BaseModel):
    """Caller key must equal the receiver's PublicKey field."""
    kind: Literal["field_match"] = "field_match"
    field: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class DelegateMatch(BaseModel):
    """Caller key must equal the @delegate field of the referenced record."""
    kind: Literal["delegate_match"] = "delegate_match"
    field: str
    contract: str
    delegate_field: str

    model_config = ConfigDict(frozen=True, extra="forbid")


class LiteralKey(BaseModel):
    """Caller key must equal a key fixed in source (stored as 64-byte hex)."""
    kind: Literal["literal_key"] = "literal_key"
    key: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        try:
            return Key.from_hex(v).to_64_byte_hex()
        except KeyFormatError as e:
            raise ValueError(str(e))

    @property
    def public_key(self) -> Key:
        return Key.from_hex(self.key)


class AnyOf(BaseModel):
    """Satisfied when any member policy is satisfied."""
    kind: Literal["any_of"] = "any_of"
    policies: Tuple["Policy", ...]

    model_config = ConfigDict(frozen=True, extra="forbid")


Policy = Annotated[
    Union[Anyone, Denied, FieldMatch, DelegateMatch, LiteralKey, AnyOf],
    Field(discriminator="kind"),
]

AnyOf.model_rebuild()


class Abi(BaseModel):
    """Compiled artifact for one (contract, function) pair."""
    contract: str
    function: str
    this_type: Optional[StructType]
    param_names: Tuple[str, ...] = ()
    param_types: Tuple[Type, ...] = ()
    return_type: Optional[Type] = None
    other_contract_types: Tuple[StructType, ...] = ()
    dependent_fields: Tuple[Tuple[str, Type], ...] = Field(
        default=(),
        description="Fields the execution depends on, in first-reference order; one commitment each",
    )
    required_references: Tuple[str, ...] = Field(
        default=(),
        description="Receiver reference fields dereferenced on every path; an empty id is an input error",
    )
    call_policy: Policy = Field(default_factory=Denied)
    read_policy: Policy = Field(default_factory=Denied)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def is_read_auth(self) -> bool:
        return self.function == READ_AUTH_FUNCTION

    def other_contract_type(self, name: str) -> Optional[StructType]:
        for t in self.other_contract_types:
            if t.name == name:
                return t
        return None

    def dependent_field_names(self) -> List[str]:
        return [name for name, _ in self.dependent_fields]
