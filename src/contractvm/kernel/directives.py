"""Directive resolution: turns @call / @read / @delegate annotations into policies.

Precedence for call policies: a function-level ``@call`` overrides the
record-level one; the constructor is always callable; anything else is denied.

Read policies come from the record (``@public``, ``@read``, ``@read(args)``)
and from ``@read`` on individual fields. Several sources combine as AnyOf,
and an unconditional source (``@public`` or a bare record-level ``@read``)
makes the record readable by anyone.
"""

from typing import List, Sequence

from contractvm.codes import ErrorCode

from . import ast
from .abi import AnyOf, Anyone, DelegateMatch, Denied, FieldMatch, LiteralKey
from .errors import CompileError, KeyFormatError
from .publickey import Key
from .schema import RecordSchema, Schema
from .types import ContractReferenceType, PublicKeyType

CALL = "call"
READ = "read"
PUBLIC = "public"
PRIVATE = "private"
DELEGATE = "delegate"

RECORD_DIRECTIVES = frozenset({CALL, READ, PUBLIC, PRIVATE})
FIELD_DIRECTIVES = frozenset({DELEGATE, READ})
FUNCTION_DIRECTIVES = frozenset({CALL})


def _combine(policies: List):
    if not policies:
        return Denied()
    if any(isinstance(p, Anyone) for p in policies):
        return Anyone()
    if len(policies) == 1:
        return policies[0]
    return AnyOf(policies=tuple(policies))


def _find(directives: Sequence[ast.Directive], name: str):
    found = [d for d in directives if d.name == name]
    if len(found) > 1:
        raise CompileError(f"Directive @{name} is given more than once", ErrorCode.INVALID_DIRECTIVE, found[1].line)
    return found[0] if found else None


def delegate_field(record: RecordSchema) -> str:
    """Name of the single @delegate PublicKey field of ``record``."""
    delegates = [f for f in record.declaration.fields if any(d.name == DELEGATE for d in f.directives)]
    if len(delegates) != 1:
        raise CompileError(
            f"Record '{record.name}' must declare exactly one @delegate field, found {len(delegates)}",
            ErrorCode.INVALID_DIRECTIVE,
        )
    return delegates[0].name


def validate_directives(schema: Schema, record: RecordSchema) -> None:
    """Reject unknown directive names and misplaced arguments."""
    for d in record.declaration.directives:
        if d.name not in RECORD_DIRECTIVES:
            raise CompileError(f"Unknown record directive @{d.name}", ErrorCode.INVALID_DIRECTIVE, d.line)
        if d.name in (PUBLIC, PRIVATE) and d.arguments:
            raise CompileError(f"@{d.name} takes no arguments", ErrorCode.INVALID_DIRECTIVE, d.line)
    if _find(record.declaration.directives, PUBLIC) and _find(record.declaration.directives, PRIVATE):
        raise CompileError(
            f"Record '{record.name}' cannot be both @public and @private",
            ErrorCode.INVALID_DIRECTIVE, record.declaration.line,
        )
    for f in record.declaration.fields:
        field_type = record.struct.field_type(f.name)
        for d in f.directives:
            if d.name not in FIELD_DIRECTIVES:
                raise CompileError(f"Unknown field directive @{d.name}", ErrorCode.INVALID_DIRECTIVE, d.line)
            if d.arguments:
                raise CompileError(f"Field directive @{d.name} takes no arguments", ErrorCode.INVALID_DIRECTIVE, d.line)
            if d.name == DELEGATE and not isinstance(field_type, PublicKeyType):
                raise CompileError(
                    f"@delegate field '{f.name}' must be a PublicKey", ErrorCode.INVALID_DIRECTIVE, d.line
                )
    for fn in record.declaration.functions:
        for d in fn.directives:
            if d.name not in FUNCTION_DIRECTIVES:
                raise CompileError(f"Unknown function directive @{d.name}", ErrorCode.INVALID_DIRECTIVE, d.line)
            if fn.is_constructor:
                raise CompileError(
                    "The constructor is always callable and takes no @call directive",
                    ErrorCode.INVALID_DIRECTIVE, d.line,
                )


def policy_for_argument(schema: Schema, record: RecordSchema, arg: ast.DirectiveArgument, line: int = 0):
    """Resolve one directive argument to a policy."""
    if isinstance(arg, ast.KeyLiteral):
        try:
            key = Key.parse_literal(arg.text)
        except KeyFormatError as e:
            raise CompileError(f"Invalid key literal '{arg.text}': {e}", ErrorCode.INVALID_DIRECTIVE, line)
        return LiteralKey(key=key.to_64_byte_hex())

    if len(arg.path) != 1:
        raise CompileError(
            f"Directive argument '{'.'.join(arg.path)}' must name a field of '{record.name}'",
            ErrorCode.UNSUPPORTED, line,
        )
    name = arg.path[0]
    field_type = record.struct.field_type(name)
    if field_type is None:
        raise CompileError(f"Field not found: {name}", ErrorCode.UNKNOWN_FIELD, line)
    if isinstance(field_type, PublicKeyType):
        return FieldMatch(field=name)
    if isinstance(field_type, ContractReferenceType):
        referenced = schema.record(field_type.contract)
        return DelegateMatch(field=name, contract=referenced.name, delegate_field=delegate_field(referenced))
    raise CompileError(
        f"Field '{name}' must be a PublicKey or a record with a @delegate field",
        ErrorCode.INVALID_DIRECTIVE, line,
    )


def _policies_for(schema: Schema, record: RecordSchema, directive: ast.Directive) -> List:
    if not directive.arguments:
        return [Anyone()]
    return [policy_for_argument(schema, record, arg, directive.line) for arg in directive.arguments]


def resolve_call_policy(schema: Schema, record: RecordSchema, function: ast.FunctionDeclaration):
    if function.is_constructor:
        return Anyone()
    directive = _find(function.directives, CALL) or _find(record.declaration.directives, CALL)
    if directive is None:
        return Denied()
    return _combine(_policies_for(schema, record, directive))


def resolve_read_policy(schema: Schema, record: RecordSchema):
    directives = record.declaration.directives
    policies = []
    if _find(directives, PUBLIC):
        policies.append(Anyone())
    record_read = _find(directives, READ)
    if record_read is not None:
        policies.extend(_policies_for(schema, record, record_read))
    for f in record.declaration.fields:
        if any(d.name == READ for d in f.directives):
            policies.append(policy_for_argument(schema, record, ast.FieldReference(path=(f.name,)), f.line))
    return _combine(policies)
