"""Stack machine executing linked instructions over native Python values.

Native representation: bool, str, bytes (bytes and reference ids), int,
float, ``Key`` (or None for an absent caller key), list and dict.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

from contractvm.codes import ErrorCode

from .bytecode import Instruction, primitive_suffix
from .errors import AuthorizationError, ExecutionError
from .publickey import Key
from .types import FLOATS, INTEGER_RANGES, Primitive, round_f32

logger = logging.getLogger(__name__)


def _truncated_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def _storable(value: Any, where: str) -> Any:
    if value is None:
        raise ExecutionError(f"Cannot store an absent public key in {where}")
    return value


def _truthy(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, Key):
        return not value.is_null
    return bool(value)


def arithmetic(op: str, p: Primitive, a: Any, b: Any = None) -> Any:
    """Checked arithmetic for one primitive width."""
    if op in ("div", "mod") and b == 0:
        raise ExecutionError("Division by zero")
    if p in FLOATS:
        if op == "add":
            r = a + b
        elif op == "sub":
            r = a - b
        elif op == "mul":
            r = a * b
        elif op == "div":
            r = a / b
        elif op == "mod":
            r = math.fmod(a, b)
        else:
            r = -a
        return round_f32(r) if p == Primitive.FLOAT32 else r

    if op == "add":
        r = a + b
    elif op == "sub":
        r = a - b
    elif op == "mul":
        r = a * b
    elif op == "div":
        r = _truncated_div(a, b)
    elif op == "mod":
        r = a - b * _truncated_div(a, b)
    else:
        r = -a
    low, high = INTEGER_RANGES[p]
    if not low <= r <= high:
        raise ExecutionError(f"Integer overflow in {op}.{p.value}")
    return r


class Machine:
    """Executes one linked function against a witness.

    ``records`` maps a record type name to ``{id bytes: record dict}``.
    """

    def __init__(
        self,
        instructions: Sequence[Instruction],
        this: Optional[Dict[str, Any]],
        args: Sequence[Any],
        locals_count: int,
        caller_key: Optional[Key],
        records: Dict[str, Dict[bytes, Dict[str, Any]]],
        max_steps: int,
    ):
        self.instructions = instructions
        self.this = this
        self.locals: List[Any] = list(args) + [None] * (locals_count - len(args))
        self.caller_key = caller_key
        self.records = records
        self.max_steps = max_steps
        self.stack: List[Any] = []
        self.steps = 0

    def pop(self) -> Any:
        if not self.stack:
            raise ExecutionError("Stack underflow")
        return self.stack.pop()

    def _array_index(self, array: List[Any], index: int) -> int:
        if not 0 <= index < len(array):
            raise ExecutionError(f"Array index {index} out of bounds for length {len(array)}")
        return index

    def run(self) -> Tuple[Optional[Dict[str, Any]], Any]:
        """Run to ``ret``/``ret.value``; returns (receiver, result)."""
        code = self.instructions
        push = self.stack.append
        pc = 0
        while True:
            if pc >= len(code):
                raise ExecutionError("Execution ran past the end of the function")
            self.steps += 1
            if self.steps > self.max_steps:
                raise ExecutionError(f"Step limit of {self.max_steps} exceeded", ErrorCode.STEP_LIMIT)
            ins = code[pc]
            pc += 1
            op = ins.op

            if op.startswith("push."):
                push(ins.operand)
            elif op == "load.this":
                push(self.this[ins.operand])
            elif op == "store.this":
                self.this[ins.operand] = _storable(self.pop(), f"'{ins.operand}'")
            elif op == "load.local":
                push(self.locals[ins.operand])
            elif op == "store.local":
                self.locals[ins.operand] = self.pop()
            elif op == "load.ctx":
                push(self.caller_key)
            elif op == "get.field":
                obj = self.pop()
                push(obj[ins.operand])
            elif op == "set.field":
                value = _storable(self.pop(), f"'{ins.operand}'")
                obj = dict(self.pop())
                obj[ins.operand] = value
                push(obj)
            elif op == "deref":
                ref = self.pop()
                record = self.records.get(ins.operand, {}).get(ref)
                if record is None:
                    raise ExecutionError(
                        f"{ins.operand} record {ref.decode('utf-8', errors='replace')!r} was not supplied"
                    )
                push(record)
            elif op == "array.new":
                n = ins.operand
                items = self.stack[len(self.stack) - n:] if n else []
                del self.stack[len(self.stack) - n:]
                push(list(items))
            elif op == "array.len" or op == "string.len":
                push(len(self.pop()))
            elif op == "array.get":
                index = self.pop()
                array = self.pop()
                push(array[self._array_index(array, index)])
            elif op == "array.set":
                value = _storable(self.pop(), "an array element")
                index = self.pop()
                array = list(self.pop())
                array[self._array_index(array, index)] = value
                push(array)
            elif op == "array.push":
                value = _storable(self.pop(), "an array element")
                push(list(self.pop()) + [value])
            elif op == "array.index_of":
                target = self.pop()
                array = self.pop()
                push(next((i for i, item in enumerate(array) if item == target), -1))
            elif op == "array.includes":
                target = self.pop()
                push(target in self.pop())
            elif op == "concat":
                b = self.pop()
                push(self.pop() + b)
            elif op in ("eq", "neq", "lt", "lte", "gt", "gte", "key.match"):
                b = self.pop()
                a = self.pop()
                if op == "eq":
                    push(a == b)
                elif op == "neq":
                    push(a != b)
                elif op == "lt":
                    push(a < b)
                elif op == "lte":
                    push(a <= b)
                elif op == "gt":
                    push(a > b)
                elif op == "gte":
                    push(a >= b)
                else:
                    push(isinstance(a, Key) and not a.is_null and a == b)
            elif op == "not":
                push(not self.pop())
            elif op == "truthy":
                push(_truthy(self.pop()))
            elif op == "jmp":
                pc = ins.operand
            elif op == "jz":
                if not self.pop():
                    pc = ins.operand
            elif op == "jnz":
                if self.pop():
                    pc = ins.operand
            elif op == "dup":
                value = self.pop()
                push(value)
                push(value)
            elif op == "drop":
                self.pop()
            elif op == "abort":
                raise ExecutionError(str(self.pop()))
            elif op == "abort.unauthorized":
                raise AuthorizationError()
            elif op == "ret":
                return self.this, None
            elif op == "ret.value":
                return self.this, self.pop()
            else:
                name, _, _ = op.partition(".")
                p = primitive_suffix(op)
                if p is None:
                    raise ExecutionError(f"Unknown opcode '{op}'")
                if name == "neg":
                    push(arithmetic(name, p, self.pop()))
                else:
                    b = self.pop()
                    push(arithmetic(name, p, self.pop(), b))
