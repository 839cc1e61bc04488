"""Compiler: type checking and code generation for one (contract, function) pair.

Entry point is ``compile(program, contract, function)`` which returns the
bytecode text and its ABI. The synthesized ``.readAuth`` function evaluates the
record's read policy and returns a boolean.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from contractvm.codes import ErrorCode

from . import ast
from .abi import (
    READ_AUTH_FUNCTION,
    Abi,
    AnyOf,
    Anyone,
    DelegateMatch,
    Denied,
    FieldMatch,
    LiteralKey,
)
from .bytecode import Header, Instruction, encode
from .dependencies import collect_dependent_fields, collect_other_contracts
from .directives import resolve_call_policy, resolve_read_policy, validate_directives
from .errors import CompileError
from .schema import RecordSchema, Schema
from .types import (
    BOOLEAN,
    FLOAT64,
    FLOATS,
    INT32,
    INTEGER_RANGES,
    PUBLIC_KEY,
    STRING,
    UINT32,
    ArrayType,
    ContractReferenceType,
    Primitive,
    PublicKeyType,
    StructType,
    describe_type,
    is_integer,
    is_numeric,
    round_f32,
)

logger = logging.getLogger(__name__)

CONTEXT_NAME = "ctx"
CONTEXT_ATTRIBUTES = {"publicKey": PUBLIC_KEY}

_ARITHMETIC = {"+": "add", "-": "sub", "*": "mul", "/": "div", "%": "mod"}
_ORDERING = {"<": "lt", "<=": "lte", ">": "gt", ">=": "gte"}
_EQUALITY = {"==": "eq", "!=": "neq"}
_SIGNED = (Primitive.INT32, Primitive.INT64) + FLOATS


def _is_untyped_literal(e) -> bool:
    if isinstance(e, ast.NumberLiteral):
        return True
    return isinstance(e, ast.Unary) and e.op == "-" and isinstance(e.operand, ast.NumberLiteral)


class FunctionCompiler:
    """Emits instructions for a single function body."""

    def __init__(self, schema: Schema, record: RecordSchema, params: Sequence[Tuple[str, object]], return_type=None):
        self.schema = schema
        self.record = record
        self.this_type: StructType = record.struct
        self.return_type = return_type
        self.code: List[Instruction] = []
        self._labels = 0
        self._scopes: List[Dict[str, int]] = [{}]
        self._local_types: List[object] = []
        self._types: Dict[int, object] = {}
        self._conditional = 0
        self._returned_early = False
        # Receiver references dereferenced on every path through the function.
        self.required_references: List[str] = []
        for name, t in params:
            self._declare(name, t, 0)

    # ------------------------------------------------------------------
    # Emission helpers
    # ------------------------------------------------------------------

    @property
    def local_count(self) -> int:
        return len(self._local_types)

    def emit(self, op: str, operand=None) -> None:
        self.code.append(Instruction(op, operand))

    def new_label(self) -> str:
        name = f"L{self._labels}"
        self._labels += 1
        return name

    @contextmanager
    def _scratch(self):
        """Compile into a scratch buffer to learn an expression's type."""
        code, labels = self.code, self._labels
        self.code = []
        try:
            yield
        finally:
            self.code, self._labels = code, labels

    def _infer(self, e):
        # Memoized per node so nested operators are inferred once each.
        key = id(e)
        if key not in self._types:
            with self._scratch():
                self._types[key] = self.expr(e)
        return self._types[key]

    @contextmanager
    def _branch(self):
        """Code emitted inside may be skipped at run time."""
        self._conditional += 1
        try:
            yield
        finally:
            self._conditional -= 1

    def _require_reference(self, field: str) -> None:
        if self._conditional or self._returned_early:
            return
        if field not in self.required_references:
            self.required_references.append(field)

    def _peek_type(self, e):
        if _is_untyped_literal(e):
            return None
        return self._infer(e)

    def _expect(self, expected, actual, line: int) -> None:
        if expected != actual:
            raise CompileError(
                f"Type mismatch: expected {describe_type(expected)}, found {describe_type(actual)}",
                ErrorCode.TYPE_MISMATCH, line,
            )

    # ------------------------------------------------------------------
    # Locals
    # ------------------------------------------------------------------

    def _declare(self, name: str, t, line: int) -> int:
        scope = self._scopes[-1]
        if name in scope:
            raise CompileError(f"'{name}' is already declared", ErrorCode.DUPLICATE_DECLARATION, line)
        self._local_types.append(t)
        scope[name] = len(self._local_types) - 1
        return scope[name]

    def _lookup(self, name: str) -> Optional[int]:
        for scope in reversed(self._scopes):
            if name in scope:
                return scope[name]
        return None

    def _local(self, name: str, line: int) -> Tuple[int, object]:
        slot = self._lookup(name)
        if slot is None:
            raise CompileError(f"Unknown identifier '{name}'", ErrorCode.UNKNOWN_IDENTIFIER, line)
        return slot, self._local_types[slot]

    def _is_context(self, e) -> bool:
        return isinstance(e, ast.Identifier) and e.name == CONTEXT_NAME and self._lookup(CONTEXT_NAME) is None

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def policy_check(self, policy) -> None:
        """Push a boolean telling whether the caller satisfies ``policy``."""
        if isinstance(policy, Anyone):
            self.emit("push.boolean", True)
        elif isinstance(policy, Denied):
            self.emit("push.boolean", False)
        elif isinstance(policy, FieldMatch):
            self.emit("load.ctx", "publicKey")
            self.emit("load.this", policy.field)
            self.emit("key.match")
        elif isinstance(policy, DelegateMatch):
            # An unset reference names no delegate and never matches.
            self._require_reference(policy.field)
            unset, end = self.new_label(), self.new_label()
            self.emit("load.ctx", "publicKey")
            self.emit("load.this", policy.field)
            self.emit("dup")
            self.emit("truthy")
            self.emit("jz", unset)
            self.emit("deref", policy.contract)
            self.emit("get.field", policy.delegate_field)
            self.emit("key.match")
            self.emit("jmp", end)
            self.emit("label", unset)
            self.emit("drop")
            self.emit("drop")
            self.emit("push.boolean", False)
            self.emit("label", end)
        elif isinstance(policy, LiteralKey):
            self.emit("load.ctx", "publicKey")
            self.emit("push.key", policy.key)
            self.emit("key.match")
        elif isinstance(policy, AnyOf):
            # Stops at the first satisfied member; later members never run.
            # Another member can authorize, so no member's reference is required.
            satisfied, end = self.new_label(), self.new_label()
            for member in policy.policies:
                with self._branch():
                    self.policy_check(member)
                self.emit("jnz", satisfied)
            self.emit("push.boolean", False)
            self.emit("jmp", end)
            self.emit("label", satisfied)
            self.emit("push.boolean", True)
            self.emit("label", end)
        else:
            raise CompileError(f"Unsupported policy {policy!r}", ErrorCode.UNSUPPORTED)

    def compile_function(self, function: ast.FunctionDeclaration, call_policy) -> None:
        if not function.is_constructor and not isinstance(call_policy, Anyone):
            authorized = self.new_label()
            self.policy_check(call_policy)
            self.emit("jnz", authorized)
            self.emit("abort.unauthorized")
            self.emit("label", authorized)
        self.statement(function.body)
        if self.return_type is None:
            self.emit("ret")
        else:
            self.emit("push.string", f"Function '{function.name}' did not return a value")
            self.emit("abort")

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def statement(self, s) -> None:
        if isinstance(s, ast.Block):
            self._scopes.append({})
            try:
                for inner in s.statements:
                    self.statement(inner)
            finally:
                self._scopes.pop()
        elif isinstance(s, ast.Let):
            declared = self.schema.resolve_type(s.type, s.line) if s.type is not None else None
            t = self._value(s.value, declared, s.line)
            if declared is not None:
                self._expect(declared, t, s.line)
            slot = self._declare(s.name, declared or t, s.line)
            self.emit("store.local", slot)
        elif isinstance(s, ast.Assign):
            self._assign(s)
        elif isinstance(s, ast.If):
            otherwise = self.new_label()
            self._condition(s.condition, s.line)
            self.emit("jz", otherwise)
            with self._branch():
                self.statement(s.then)
            if s.otherwise is None:
                self.emit("label", otherwise)
            else:
                end = self.new_label()
                self.emit("jmp", end)
                self.emit("label", otherwise)
                with self._branch():
                    self.statement(s.otherwise)
                self.emit("label", end)
        elif isinstance(s, ast.While):
            top, end = self.new_label(), self.new_label()
            self.emit("label", top)
            self._condition(s.condition, s.line)
            self.emit("jz", end)
            with self._branch():
                self.statement(s.body)
            self.emit("jmp", top)
            self.emit("label", end)
        elif isinstance(s, ast.Return):
            if self._conditional:
                self._returned_early = True
            if self.return_type is None:
                if s.value is not None:
                    raise CompileError("Function does not declare a return type", ErrorCode.TYPE_MISMATCH, s.line)
                self.emit("ret")
            else:
                if s.value is None:
                    raise CompileError(
                        f"Function must return a value of type {describe_type(self.return_type)}",
                        ErrorCode.TYPE_MISMATCH, s.line,
                    )
                self._expect(self.return_type, self._value(s.value, self.return_type, s.line), s.line)
                self.emit("ret.value")
        elif isinstance(s, ast.ExpressionStatement):
            if self.expr(s.expression) is not None:
                self.emit("drop")
        else:
            raise CompileError(f"Unsupported statement {type(s).__name__}", ErrorCode.UNSUPPORTED, getattr(s, "line", 0))

    def _condition(self, e, line: int) -> None:
        t = self._value(e, BOOLEAN, line)
        if t == BOOLEAN:
            return
        if isinstance(t, PublicKeyType) or t == STRING or is_numeric(t):
            self.emit("truthy")
            return
        raise CompileError(f"Condition must be a boolean, found {describe_type(t)}", ErrorCode.TYPE_MISMATCH, line)

    def _assign(self, s: ast.Assign) -> None:
        if s.op == "=":
            def emit_value(expected):
                self._expect(expected, self._value(s.value, expected, s.line), s.line)
        else:
            def emit_value(expected):
                self._value(s.target, expected, s.line)
                self._expect(expected, self._value(s.value, expected, s.line), s.line)
                if s.op == "+=" and expected == STRING:
                    self.emit("concat")
                elif is_numeric(expected):
                    self.emit(f"{_ARITHMETIC[s.op[0]]}.{expected.primitive.value}")
                else:
                    raise CompileError(
                        f"Operator '{s.op}' is not defined for {describe_type(expected)}",
                        ErrorCode.TYPE_MISMATCH, s.line,
                    )
        self._store(s.target, emit_value, s.line)

    def _store(self, target, emit_value: Callable, line: int) -> None:
        """Store the value pushed by ``emit_value(expected_type)`` into an lvalue."""
        if isinstance(target, ast.Identifier):
            if self._is_context(target):
                raise CompileError("Cannot assign to ctx", ErrorCode.UNSUPPORTED, line)
            slot, t = self._local(target.name, line)
            emit_value(t)
            self.emit("store.local", slot)
        elif isinstance(target, ast.Member) and isinstance(target.object, ast.This):
            t = self._this_field(target.name, line)
            emit_value(t)
            self.emit("store.this", target.name)
        elif isinstance(target, ast.Member):
            if self._is_context(target.object):
                raise CompileError("Cannot assign to ctx", ErrorCode.UNSUPPORTED, line)

            def emit_struct(struct_t):
                if isinstance(struct_t, ContractReferenceType):
                    raise CompileError(
                        f"Cannot assign to a field of referenced record {struct_t.contract}",
                        ErrorCode.UNSUPPORTED, line,
                    )
                if not isinstance(struct_t, StructType):
                    raise CompileError(f"{describe_type(struct_t)} has no fields", ErrorCode.TYPE_MISMATCH, line)
                field_t = struct_t.field_type(target.name)
                if field_t is None:
                    raise CompileError(f"Field not found: {target.name}", ErrorCode.UNKNOWN_FIELD, line)
                self._value(target.object, struct_t, line)
                emit_value(field_t)
                self.emit("set.field", target.name)
            self._store(target.object, emit_struct, line)
        elif isinstance(target, ast.Index):
            def emit_array(array_t):
                if not isinstance(array_t, ArrayType):
                    raise CompileError(f"{describe_type(array_t)} is not an array", ErrorCode.TYPE_MISMATCH, line)
                self._value(target.object, array_t, line)
                self._index(target.index, line)
                emit_value(array_t.element)
                self.emit("array.set")
            self._store(target.object, emit_array, line)
        else:
            raise CompileError("Invalid assignment target", ErrorCode.UNSUPPORTED, line)

    # ------------------------------------------------------------------
    # Expressions
    # ------------------------------------------------------------------

    def _value(self, e, expected=None, line: int = 0):
        t = self.expr(e, expected)
        if t is None:
            raise CompileError("Expression does not produce a value", ErrorCode.TYPE_MISMATCH, getattr(e, "line", 0) or line)
        return t

    def _index(self, e, line: int) -> None:
        t = self._value(e, UINT32, line)
        if not is_integer(t):
            raise CompileError(f"Array index must be an integer, found {describe_type(t)}", ErrorCode.TYPE_MISMATCH, line)

    def _this_field(self, name: str, line: int):
        t = self.this_type.field_type(name)
        if t is None:
            raise CompileError(f"Field not found: {name}", ErrorCode.UNKNOWN_FIELD, line)
        return t

    def expr(self, e, expected=None):
        """Emit code for ``e`` and return its type (None for void calls)."""
        if isinstance(e, ast.NumberLiteral):
            return self._number(e, expected, negate=False)
        if isinstance(e, ast.StringLiteral):
            self.emit("push.string", e.value)
            return STRING
        if isinstance(e, ast.BooleanLiteral):
            self.emit("push.boolean", e.value)
            return BOOLEAN
        if isinstance(e, ast.ArrayLiteral):
            return self._array_literal(e, expected)
        if isinstance(e, ast.Identifier):
            if self._is_context(e):
                raise CompileError("'ctx' can only be used as ctx.publicKey", ErrorCode.UNSUPPORTED, e.line)
            slot, t = self._local(e.name, e.line)
            self.emit("load.local", slot)
            return t
        if isinstance(e, ast.This):
            raise CompileError("'this' must be followed by a field access", ErrorCode.UNSUPPORTED, e.line)
        if isinstance(e, ast.Member):
            return self._member(e)
        if isinstance(e, ast.Index):
            t = self._value(e.object, None, e.line)
            if not isinstance(t, ArrayType):
                raise CompileError(f"{describe_type(t)} is not an array", ErrorCode.TYPE_MISMATCH, e.line)
            self._index(e.index, e.line)
            self.emit("array.get")
            return t.element
        if isinstance(e, ast.MethodCall):
            return self._method_call(e)
        if isinstance(e, ast.Call):
            return self._call(e)
        if isinstance(e, ast.Unary):
            return self._unary(e, expected)
        if isinstance(e, ast.Binary):
            return self._binary(e, expected)
        raise CompileError(f"Unsupported expression {type(e).__name__}", ErrorCode.UNSUPPORTED, getattr(e, "line", 0))

    def _number(self, e: ast.NumberLiteral, expected, negate: bool):
        text = f"-{e.text}" if negate else e.text
        if is_numeric(expected):
            t = expected
        else:
            t = FLOAT64 if "." in e.text else INT32
        p = t.primitive
        if p in FLOATS:
            value = float(text)
            if p == Primitive.FLOAT32:
                value = round_f32(value)
        else:
            if "." in e.text:
                raise CompileError(f"Expected {p.value}, found non-integer literal {text}", ErrorCode.TYPE_MISMATCH, e.line)
            value = int(text)
            low, high = INTEGER_RANGES[p]
            if not low <= value <= high:
                raise CompileError(f"Literal {text} is out of range for {p.value}", ErrorCode.TYPE_MISMATCH, e.line)
        self.emit(f"push.{p.value}", value)
        return t

    def _array_literal(self, e: ast.ArrayLiteral, expected):
        if isinstance(expected, ArrayType):
            element = expected.element
        elif e.items:
            element = self._infer(e.items[0])
        else:
            raise CompileError("Cannot infer the type of an empty array literal", ErrorCode.TYPE_MISMATCH, e.line)
        for item in e.items:
            self._expect(element, self._value(item, element, e.line), e.line)
        self.emit("array.new", len(e.items))
        return ArrayType(element=element)

    def _member(self, e: ast.Member):
        if isinstance(e.object, ast.This):
            t = self._this_field(e.name, e.line)
            self.emit("load.this", e.name)
            return t
        if self._is_context(e.object):
            if e.name not in CONTEXT_ATTRIBUTES:
                raise CompileError(f"Unknown context attribute '{e.name}'", ErrorCode.UNKNOWN_FIELD, e.line)
            self.emit("load.ctx", e.name)
            return CONTEXT_ATTRIBUTES[e.name]
        t = self._value(e.object, None, e.line)
        if e.name == "length" and isinstance(t, ArrayType):
            self.emit("array.len")
            return UINT32
        if e.name == "length" and t == STRING:
            self.emit("string.len")
            return UINT32
        if isinstance(t, ContractReferenceType):
            struct = self.schema.record(t.contract).struct
            field_t = struct.field_type(e.name)
            if field_t is None:
                raise CompileError(f"Field not found: {t.contract}.{e.name}", ErrorCode.UNKNOWN_FIELD, e.line)
            if isinstance(e.object, ast.Member) and isinstance(e.object.object, ast.This):
                self._require_reference(e.object.name)
            self.emit("deref", t.contract)
            self.emit("get.field", e.name)
            return field_t
        if isinstance(t, StructType):
            field_t = t.field_type(e.name)
            if field_t is None:
                raise CompileError(f"Field not found: {e.name}", ErrorCode.UNKNOWN_FIELD, e.line)
            self.emit("get.field", e.name)
            return field_t
        raise CompileError(f"{describe_type(t)} has no field '{e.name}'", ErrorCode.UNKNOWN_FIELD, e.line)

    def _method_call(self, e: ast.MethodCall):
        if e.name in ("indexOf", "includes", "push") and len(e.args) != 1:
            raise CompileError(f"{e.name} takes exactly one argument", ErrorCode.TYPE_MISMATCH, e.line)
        if e.name in ("indexOf", "includes"):
            t = self._value(e.object, None, e.line)
            if not isinstance(t, ArrayType):
                raise CompileError(f"{e.name} is only defined on arrays", ErrorCode.TYPE_MISMATCH, e.line)
            self._expect(t.element, self._value(e.args[0], t.element, e.line), e.line)
            if e.name == "indexOf":
                self.emit("array.index_of")
                return INT32
            self.emit("array.includes")
            return BOOLEAN
        if e.name == "push":
            def emit_pushed(array_t):
                if not isinstance(array_t, ArrayType):
                    raise CompileError("push is only defined on arrays", ErrorCode.TYPE_MISMATCH, e.line)
                self._value(e.object, array_t, e.line)
                self._expect(array_t.element, self._value(e.args[0], array_t.element, e.line), e.line)
                self.emit("array.push")
            self._store(e.object, emit_pushed, e.line)
            return None
        raise CompileError(f"Unknown method '{e.name}'", ErrorCode.UNKNOWN_FUNCTION, e.line)

    def _call(self, e: ast.Call):
        if e.name != "error":
            raise CompileError(f"Function not found: {e.name}", ErrorCode.UNKNOWN_FUNCTION, e.line)
        if len(e.args) != 1:
            raise CompileError("error takes exactly one argument", ErrorCode.TYPE_MISMATCH, e.line)
        self._expect(STRING, self._value(e.args[0], STRING, e.line), e.line)
        self.emit("abort")
        return None

    def _unary(self, e: ast.Unary, expected):
        if e.op == "!":
            self._condition(e.operand, e.line)
            self.emit("not")
            return BOOLEAN
        if isinstance(e.operand, ast.NumberLiteral):
            return self._number(e.operand, expected, negate=True)
        t = self._value(e.operand, expected, e.line)
        if not is_numeric(t) or t.primitive not in _SIGNED:
            raise CompileError(f"Cannot negate {describe_type(t)}", ErrorCode.TYPE_MISMATCH, e.line)
        self.emit(f"neg.{t.primitive.value}")
        return t

    def _operand_type(self, e: ast.Binary, expected=None):
        t = self._peek_type(e.left) or self._peek_type(e.right)
        if t is None and (is_numeric(expected) or expected == STRING):
            t = expected
        if t is None:
            t = self._infer(e.left)
        return t

    def _binary(self, e: ast.Binary, expected):
        if e.op in ("&&", "||"):
            end = self.new_label()
            self._condition(e.left, e.line)
            self.emit("dup")
            self.emit("jz" if e.op == "&&" else "jnz", end)
            self.emit("drop")
            with self._branch():
                self._condition(e.right, e.line)
            self.emit("label", end)
            return BOOLEAN

        if e.op in _ARITHMETIC:
            t = self._operand_type(e, expected)
        else:
            t = self._operand_type(e)
        self._expect(t, self._value(e.left, t, e.line), e.line)
        self._expect(t, self._value(e.right, t, e.line), e.line)

        if e.op in _EQUALITY:
            self.emit(_EQUALITY[e.op])
            return BOOLEAN
        if e.op in _ORDERING:
            if not (is_numeric(t) or t == STRING):
                raise CompileError(f"Cannot order values of type {describe_type(t)}", ErrorCode.TYPE_MISMATCH, e.line)
            self.emit(_ORDERING[e.op])
            return BOOLEAN
        if e.op == "+" and t == STRING:
            self.emit("concat")
            return STRING
        if not is_numeric(t):
            raise CompileError(
                f"Operator '{e.op}' is not defined for {describe_type(t)}", ErrorCode.TYPE_MISMATCH, e.line
            )
        self.emit(f"{_ARITHMETIC[e.op]}.{t.primitive.value}")
        return t


def compile(program: ast.Program, contract: str, function: str) -> Tuple[str, Abi]:
    """Compile one function (or ``.readAuth``) of a contract.

    Returns:
        (bytecode text, Abi)

    Raises:
        CompileError: unknown contract/function, type mismatch, bad directive
    """
    schema = Schema(program)
    record = schema.record(contract)
    validate_directives(schema, record)
    read_policy = resolve_read_policy(schema, record)

    if function == READ_AUTH_FUNCTION:
        params: Tuple[Tuple[str, object], ...] = ()
        return_type = BOOLEAN
        call_policy = Anyone()
        fc = FunctionCompiler(schema, record, params, return_type)
        fc.policy_check(read_policy)
        fc.emit("ret.value")
    else:
        declaration = record.function(function)
        if declaration is None:
            raise CompileError(f"Function not found: {function}", ErrorCode.UNKNOWN_FUNCTION)
        params = tuple((p.name, schema.resolve_type(p.type, p.line)) for p in declaration.params)
        return_type = (
            schema.resolve_type(declaration.return_type, declaration.line)
            if declaration.return_type is not None else None
        )
        call_policy = resolve_call_policy(schema, record, declaration)
        fc = FunctionCompiler(schema, record, params, return_type)
        fc.compile_function(declaration, call_policy)

    header = Header(
        contract=contract,
        function=function,
        params=len(params),
        locals=fc.local_count,
        returns=return_type is not None,
    )
    bytecode = encode(header, fc.code)
    abi = Abi(
        contract=contract,
        function=function,
        this_type=record.struct,
        param_names=tuple(name for name, _ in params),
        param_types=tuple(t for _, t in params),
        return_type=return_type,
        other_contract_types=collect_other_contracts(schema, fc.code),
        dependent_fields=collect_dependent_fields(record.struct, fc.code),
        required_references=tuple(fc.required_references),
        call_policy=call_policy,
        read_policy=read_policy,
    )
    logger.debug(
        "compiled %s.%s: %d instruction(s), dependent fields %s",
        contract, function, len(fc.code), abi.dependent_field_names(),
    )
    return bytecode, abi
