"""Instruction set and text encoding of compiled functions.

A compiled function is deterministic text::

    .function Account.addBalance params=1 locals=1 returns=0
    load.this "balance"
    load.local 0
    add.u32
    store.this "balance"
    ret

Each instruction is an opcode optionally followed by one JSON operand.
``OP_SPECS`` records the operand kind and stack effect of every opcode; the
linker checks operands and stack depth against it, and the semantics live in
``vm``.
"""

import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .errors import LinkError
from .types import FLOATS, INTEGER_RANGES, NUMERICS, Primitive

# Operand kinds
NONE = "none"
NAME = "name"        # field, contract or context attribute name
LABEL = "label"
SLOT = "slot"        # local index
COUNT = "count"
LITERAL = "literal"  # typed by the opcode suffix
KEY = "key"          # 64-byte hex


@dataclass(frozen=True)
class OpSpec:
    operand: str
    pops: int
    pushes: int


OP_SPECS: Dict[str, OpSpec] = {
    # Literals
    "push.key": OpSpec(KEY, 0, 1),
    # Receiver, locals, context
    "load.this": OpSpec(NAME, 0, 1),
    "store.this": OpSpec(NAME, 1, 0),
    "load.local": OpSpec(SLOT, 0, 1),
    "store.local": OpSpec(SLOT, 1, 0),
    "load.ctx": OpSpec(NAME, 0, 1),
    # Structs and references
    "get.field": OpSpec(NAME, 1, 1),
    "set.field": OpSpec(NAME, 2, 1),
    "deref": OpSpec(NAME, 1, 1),
    # Arrays and strings
    "array.new": OpSpec(COUNT, -1, 1),
    "array.len": OpSpec(NONE, 1, 1),
    "array.get": OpSpec(NONE, 2, 1),
    "array.set": OpSpec(NONE, 3, 1),
    "array.push": OpSpec(NONE, 2, 1),
    "array.index_of": OpSpec(NONE, 2, 1),
    "array.includes": OpSpec(NONE, 2, 1),
    "string.len": OpSpec(NONE, 1, 1),
    "concat": OpSpec(NONE, 2, 1),
    # Comparison and logic
    "eq": OpSpec(NONE, 2, 1),
    "neq": OpSpec(NONE, 2, 1),
    "lt": OpSpec(NONE, 2, 1),
    "lte": OpSpec(NONE, 2, 1),
    "gt": OpSpec(NONE, 2, 1),
    "gte": OpSpec(NONE, 2, 1),
    "not": OpSpec(NONE, 1, 1),
    "truthy": OpSpec(NONE, 1, 1),
    "key.match": OpSpec(NONE, 2, 1),
    # Control flow
    "label": OpSpec(LABEL, 0, 0),
    "jmp": OpSpec(LABEL, 0, 0),
    "jz": OpSpec(LABEL, 1, 0),
    "jnz": OpSpec(LABEL, 1, 0),
    "dup": OpSpec(NONE, 1, 2),
    "drop": OpSpec(NONE, 1, 0),
    "abort": OpSpec(NONE, 1, 0),
    "abort.unauthorized": OpSpec(NONE, 0, 0),
    "ret": OpSpec(NONE, 0, 0),
    "ret.value": OpSpec(NONE, 1, 0),
}

for _p in Primitive:
    OP_SPECS[f"push.{_p.value}"] = OpSpec(LITERAL, 0, 1)
for _p in NUMERICS:
    for _op in ("add", "sub", "mul", "div", "mod"):
        OP_SPECS[f"{_op}.{_p.value}"] = OpSpec(NONE, 2, 1)
    OP_SPECS[f"neg.{_p.value}"] = OpSpec(NONE, 1, 1)

JUMPS = frozenset({"jmp", "jz", "jnz"})


@dataclass(frozen=True)
class Instruction:
    op: str
    operand: Any = None

    def encode(self) -> str:
        if self.operand is None:
            return self.op
        return f"{self.op} {_dumps(self.operand)}"


@dataclass(frozen=True)
class Header:
    contract: str
    function: str
    params: int
    locals: int
    returns: bool

    def encode(self) -> str:
        return (
            f".function {self.contract}.{self.function} "
            f"params={self.params} locals={self.locals} returns={int(self.returns)}"
        )


def _dumps(operand: Any) -> str:
    return json.dumps(operand, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def encode(header: Header, instructions: List[Instruction]) -> str:
    lines = [header.encode()]
    lines.extend(i.encode() for i in instructions)
    return "\n".join(lines) + "\n"


_HEADER_RE = re.compile(
    r"^\.function (?P<contract>[^.\s]+)\.(?P<function>\S+) "
    r"params=(?P<params>\d+) locals=(?P<locals>\d+) returns=(?P<returns>[01])$"
)


def decode(text: str) -> Tuple[Header, List[Instruction]]:
    """Parse bytecode text, checking opcodes and operand kinds.

    Raises:
        LinkError: malformed header, unknown opcode or bad operand
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise LinkError("Bytecode is empty")
    m = _HEADER_RE.match(lines[0].strip())
    if m is None:
        raise LinkError(f"Malformed bytecode header: {lines[0]!r}")
    header = Header(
        contract=m.group("contract"),
        function=m.group("function"),
        params=int(m.group("params")),
        locals=int(m.group("locals")),
        returns=m.group("returns") == "1",
    )
    instructions = []
    for lineno, line in enumerate(lines[1:], start=2):
        op, _, raw = line.strip().partition(" ")
        spec = OP_SPECS.get(op)
        if spec is None:
            raise LinkError(f"Unknown opcode '{op}' at line {lineno}")
        operand = None
        if raw:
            try:
                operand = json.loads(raw)
            except json.JSONDecodeError as e:
                raise LinkError(f"Bad operand for '{op}' at line {lineno}: {e}")
        _check_operand(op, spec, operand, lineno)
        instructions.append(Instruction(op, operand))
    return header, instructions


def _check_operand(op: str, spec: OpSpec, operand: Any, lineno: int) -> None:
    kind = spec.operand
    ok = True
    if kind == NONE:
        ok = operand is None
    elif kind in (NAME, LABEL, KEY):
        ok = isinstance(operand, str) and bool(operand)
    elif kind in (SLOT, COUNT):
        ok = isinstance(operand, int) and not isinstance(operand, bool) and operand >= 0
    elif kind == LITERAL:
        ok = literal_matches(op.split(".", 1)[1], operand)
    if not ok:
        raise LinkError(f"Invalid operand {operand!r} for '{op}' at line {lineno}")


def literal_matches(suffix: str, operand: Any) -> bool:
    p = Primitive(suffix)
    if p == Primitive.BOOLEAN:
        return isinstance(operand, bool)
    if p == Primitive.STRING:
        return isinstance(operand, str)
    if p == Primitive.BYTES:
        if not isinstance(operand, str):
            return False
        try:
            base64.b64decode(operand.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError):
            return False
        return True
    if isinstance(operand, bool):
        return False
    if p in FLOATS:
        return isinstance(operand, (int, float))
    low, high = INTEGER_RANGES[p]
    return isinstance(operand, int) and low <= operand <= high


def literal_value(op: str, operand: Any) -> Any:
    """VM-native value of a ``push.<primitive>`` operand."""
    suffix = op.split(".", 1)[1]
    if suffix == Primitive.BYTES.value:
        return base64.b64decode(operand.encode("ascii"))
    if Primitive(suffix) in FLOATS:
        return float(operand)
    return operand


def primitive_suffix(op: str) -> Optional[Primitive]:
    _, _, suffix = op.partition(".")
    try:
        return Primitive(suffix)
    except ValueError:
        return None
