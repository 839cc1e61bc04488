"""Dependent-field analysis over compiled instructions.

A receiver field is dependent when the function loads it (body or
authorization check) or stores a PublicKey into it. Referenced record types
are collected from ``deref`` instructions. Both lists are in first-reference
order and contain no duplicates.
"""

from typing import Iterable, List, Tuple

from .bytecode import Instruction
from .schema import Schema
from .types import PublicKeyType, StructType


def collect_dependent_fields(this_type: StructType, instructions: Iterable[Instruction]) -> Tuple[Tuple[str, object], ...]:
    seen = []
    for ins in instructions:
        if ins.op == "load.this":
            name = ins.operand
        elif ins.op == "store.this" and isinstance(this_type.field_type(ins.operand), PublicKeyType):
            name = ins.operand
        else:
            continue
        if name not in seen:
            seen.append(name)
    return tuple((name, this_type.field_type(name)) for name in seen)


def collect_other_contracts(schema: Schema, instructions: Iterable[Instruction]) -> Tuple[StructType, ...]:
    names: List[str] = []
    for ins in instructions:
        if ins.op == "deref" and ins.operand not in names:
            names.append(ins.operand)
    return tuple(schema.record(name).struct for name in names)
