"""Witness construction: validate call data against an ABI.

Only fields listed in ``abi.dependent_fields`` keep their supplied values on
the receiver; every other field is validated and then replaced by its
type's default, so the witness carries no data the call does not need.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .abi import Abi
from .errors import InputError
from .publickey import Key, coerce_key
from .types import (
    ContractReferenceType,
    ContractReferenceValue,
    StructType,
    StructValue,
    default_value,
    value_from_json,
    value_to_json,
)

logger = logging.getLogger(__name__)

RECORD_ID_FIELD = "id"
MAX_SALT = 2**64 - 1

Salts = Tuple[int, ...]


def _salts(value: Optional[Sequence[int]], struct: StructType, path: str) -> Salts:
    if value is None:
        return (0,) * len(struct.fields)
    salts = tuple(value)
    if len(salts) != len(struct.fields):
        raise InputError(path, f"expected {len(struct.fields)} salt(s), one per field, got {len(salts)}")
    for i, salt in enumerate(salts):
        if isinstance(salt, bool) or not isinstance(salt, int) or not 0 <= salt <= MAX_SALT:
            raise InputError(f"{path}[{i}]", "salt must be an unsigned 64-bit integer")
    return salts


def _struct(struct: StructType, data: Any, path: str) -> StructValue:
    if isinstance(data, StructValue):
        data = value_to_json(data)
    return value_from_json(struct, data, path)


def record_id(record: StructValue) -> bytes:
    """Identifier bytes used to resolve references to ``record``."""
    return str(record.get(RECORD_ID_FIELD).value).encode("utf-8")


@dataclass(frozen=True)
class OtherRecord:
    value: StructValue
    salts: Salts


@dataclass(frozen=True)
class Inputs:
    abi: Abi
    caller_key: Optional[Key]
    this_salts: Salts
    this: Optional[StructValue]
    args: Tuple[Any, ...]
    other_records: Mapping[str, Tuple[OtherRecord, ...]]

    @classmethod
    def build(
        cls,
        abi: Abi,
        caller_key: Any = None,
        this_salts: Optional[Sequence[int]] = None,
        this: Any = None,
        args: Sequence[Any] = (),
        other_records: Optional[Mapping[str, Sequence[Any]]] = None,
    ) -> "Inputs":
        """Validate JSON-like call data and build the witness.

        ``other_records`` maps a record type name to a list of records, each
        either a plain object or an ``(object, salts)`` pair.

        Raises:
            InputError: data does not match the ABI (names the offending field)
            KeyFormatError: the caller key is malformed
        """
        key = coerce_key(caller_key)

        receiver = None
        salts: Salts = ()
        if abi.this_type is not None:
            salts = _salts(this_salts, abi.this_type, "this_salts")
            if this is None:
                supplied = default_value(abi.this_type)
            else:
                supplied = _struct(abi.this_type, this, "this")
            dependent = set(abi.dependent_field_names())
            receiver = StructValue(tuple(
                (f.name, supplied.get(f.name) if f.name in dependent else default_value(f.type))
                for f in abi.this_type.fields
            ))

        args = list(args)
        if len(args) != len(abi.param_types):
            raise InputError("args", f"expected {len(abi.param_types)} argument(s), got {len(args)}")
        names = abi.param_names or tuple(f"args[{i}]" for i in range(len(args)))
        decoded_args = tuple(
            value_from_json(t, data, name) for name, t, data in zip(names, abi.param_types, args)
        )

        records = cls._other_records(abi, other_records or {})
        if receiver is not None:
            cls._check_references(abi, receiver, records)

        logger.debug(
            "built inputs for %s.%s: caller=%s, %d arg(s), other records %s",
            abi.contract, abi.function, "set" if key is not None else "none",
            len(decoded_args), sorted(records),
        )
        return cls(
            abi=abi,
            caller_key=key,
            this_salts=salts,
            this=receiver,
            args=decoded_args,
            other_records=records,
        )

    @staticmethod
    def _other_records(abi: Abi, supplied: Mapping[str, Sequence[Any]]) -> Dict[str, Tuple[OtherRecord, ...]]:
        for name in supplied:
            if abi.other_contract_type(name) is None:
                raise InputError(f"other_records.{name}", "record type is not referenced by this function")
        records = {}
        for struct in abi.other_contract_types:
            path = f"other_records.{struct.name}"
            if struct.name not in supplied:
                raise InputError(path, f"missing records for {struct.name}")
            if struct.field_type(RECORD_ID_FIELD) is None:
                raise InputError(path, f"record type {struct.name} has no '{RECORD_ID_FIELD}' field")
            entries = []
            for i, item in enumerate(supplied[struct.name]):
                if isinstance(item, (tuple, list)) and len(item) == 2:
                    data, item_salts = item
                else:
                    data, item_salts = item, None
                entries.append(OtherRecord(
                    value=_struct(struct, data, f"{path}[{i}]"),
                    salts=_salts(item_salts, struct, f"{path}[{i}].salts"),
                ))
            records[struct.name] = tuple(entries)
        return records

    @staticmethod
    def _check_references(abi: Abi, receiver: StructValue, records: Mapping[str, Tuple[OtherRecord, ...]]) -> None:
        for name, t in abi.dependent_fields:
            if not isinstance(t, ContractReferenceType) or t.contract not in records:
                continue
            ref = receiver.get(name)
            if not isinstance(ref, ContractReferenceValue):
                continue
            if not ref.value:
                if name in abi.required_references:
                    raise InputError(f"this.{name}", f"reference to {t.contract} is empty but the call dereferences it")
                continue
            if not any(record_id(r.value) == ref.value for r in records[t.contract]):
                raise InputError(
                    f"this.{name}",
                    f"no {t.contract} record with id {ref.value.decode('utf-8', errors='replace')!r} in other_records",
                )
