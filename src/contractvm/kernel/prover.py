"""Prover runtime: link bytecode against its ABI and execute it over a witness."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .abi import Abi
from .bytecode import JUMPS, OP_SPECS, Header, Instruction, decode, literal_value
from .errors import KeyFormatError, LinkError
from .hash_utils import Digest, commit_field, commit_value, hash_impl
from .inputs import Inputs, record_id
from .publickey import Key
from .types import BooleanValue, StructValue, from_native, to_native
from .vm import Machine

logger = logging.getLogger(__name__)

CONTEXT_ATTRIBUTES = frozenset({"publicKey"})
TERMINAL = frozenset({"abort", "abort.unauthorized", "ret", "ret.value"})
DEFAULT_MAX_STEPS = 1_000_000


class RunOptions(BaseModel):
    """Execution limits. Passed explicitly to ``run``."""
    max_steps: int = Field(default=DEFAULT_MAX_STEPS, gt=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


@dataclass(frozen=True)
class Program:
    """A linked, immutable function ready to run any number of times."""
    abi: Abi
    header: Header
    instructions: Tuple[Instruction, ...]
    fingerprint: str


@dataclass(frozen=True)
class RunOutput:
    this: Optional[StructValue]
    result: Optional[Any]
    hashes: Tuple[Digest, ...]
    read_auth: bool
    steps: int = 0

    @property
    def result_hash(self) -> Optional[Digest]:
        if self.result is None:
            return None
        return commit_value(self.result)


def _link_operand(abi: Abi, header: Header, ins: Instruction) -> Any:
    op, operand = ins.op, ins.operand
    if op in ("load.this", "store.this"):
        if abi.this_type is None or abi.this_type.field_type(operand) is None:
            raise LinkError(f"'{op}' names unknown field '{operand}'")
    elif op == "deref":
        if abi.other_contract_type(operand) is None:
            raise LinkError(f"'deref' names record type '{operand}' missing from the ABI")
    elif op in ("load.local", "store.local"):
        if operand >= header.locals:
            raise LinkError(f"Local slot {operand} is out of range (locals={header.locals})")
    elif op == "load.ctx":
        if operand not in CONTEXT_ATTRIBUTES:
            raise LinkError(f"Unknown context attribute '{operand}'")
    elif op == "push.key":
        try:
            return Key.from_hex(operand)
        except KeyFormatError as e:
            raise LinkError(f"Invalid key operand: {e}") from e
    elif op.startswith("push."):
        return literal_value(op, operand)
    return operand


def _check_stack(instructions: Tuple[Instruction, ...]) -> None:
    """Each reachable instruction must see one stack depth, never below what it pops.

    Walks every path from the entry; jumps are already resolved to indices.
    """
    depths: Dict[int, int] = {}
    pending = [(0, 0)]
    while pending:
        pc, depth = pending.pop()
        while True:
            if pc >= len(instructions):
                raise LinkError("Execution can run past the end of the function")
            seen = depths.get(pc)
            if seen is not None:
                if seen != depth:
                    raise LinkError(f"Instruction {pc} is reached with stack depth {seen} and {depth}")
                break
            depths[pc] = depth
            ins = instructions[pc]
            spec = OP_SPECS[ins.op]
            pops = ins.operand if ins.op == "array.new" else spec.pops
            if depth < pops:
                raise LinkError(f"Stack underflow at instruction {pc} ('{ins.op}')")
            depth += spec.pushes - pops
            if ins.op in TERMINAL:
                break
            if ins.op == "jmp":
                pc = ins.operand
                continue
            if ins.op in JUMPS:
                pending.append((ins.operand, depth))
            pc += 1


def compile_program(abi: Abi, bytecode: str) -> Program:
    """Link bytecode text against its ABI.

    Raises:
        LinkError: bytecode and ABI disagree, or the bytecode is malformed
    """
    header, instructions = decode(bytecode)
    if (header.contract, header.function) != (abi.contract, abi.function):
        raise LinkError(
            f"Bytecode is for {header.contract}.{header.function}, ABI is for {abi.contract}.{abi.function}"
        )
    if header.params != len(abi.param_types):
        raise LinkError(f"Bytecode takes {header.params} parameter(s), ABI declares {len(abi.param_types)}")
    if header.returns != (abi.return_type is not None):
        raise LinkError("Bytecode and ABI disagree on whether the function returns a value")
    if header.locals < header.params:
        raise LinkError("Bytecode declares fewer locals than parameters")

    labels: Dict[str, int] = {}
    position = 0
    for ins in instructions:
        if ins.op != "label":
            position += 1
        elif ins.operand in labels:
            raise LinkError(f"Duplicate label '{ins.operand}'")
        else:
            labels[ins.operand] = position

    linked = []
    for ins in instructions:
        if ins.op == "label":
            continue
        if ins.op in JUMPS:
            if ins.operand not in labels:
                raise LinkError(f"Jump to undefined label '{ins.operand}'")
            linked.append(Instruction(ins.op, labels[ins.operand]))
        else:
            linked.append(Instruction(ins.op, _link_operand(abi, header, ins)))
    _check_stack(tuple(linked))

    program = Program(abi=abi, header=header, instructions=tuple(linked), fingerprint=hash_impl(bytecode))
    logger.debug("linked %s.%s (%s)", abi.contract, abi.function, program.fingerprint)
    return program


def run(program: Program, inputs: Inputs, options: Optional[RunOptions] = None) -> RunOutput:
    """Execute a linked program.

    Raises:
        LinkError: ``inputs`` were built for a different ABI
        ExecutionError: the function aborted (AuthorizationError when the
            caller does not satisfy the call policy)
    """
    options = options or RunOptions()
    abi = program.abi
    if inputs.abi != abi:
        raise LinkError(f"Inputs were built for {inputs.abi.contract}.{inputs.abi.function}, not {abi.contract}.{abi.function}")

    records = {
        name: {record_id(r.value): to_native(r.value) for r in entries}
        for name, entries in inputs.other_records.items()
    }
    machine = Machine(
        instructions=program.instructions,
        this=to_native(inputs.this) if inputs.this is not None else None,
        args=[to_native(a) for a in inputs.args],
        locals_count=program.header.locals,
        caller_key=inputs.caller_key,
        records=records,
        max_steps=options.max_steps,
    )
    this_native, result_native = machine.run()

    this = from_native(abi.this_type, this_native) if abi.this_type is not None else None
    result = from_native(abi.return_type, result_native) if abi.return_type is not None else None
    hashes = tuple(
        commit_field(abi.contract, name, inputs.this_salts[abi.this_type.field_index(name)], this.get(name))
        for name, _ in abi.dependent_fields
    )
    read_auth = abi.is_read_auth and result == BooleanValue(True)
    logger.debug("ran %s.%s in %d step(s)", abi.contract, abi.function, machine.steps)
    return RunOutput(this=this, result=result, hashes=hashes, read_auth=read_auth, steps=machine.steps)
