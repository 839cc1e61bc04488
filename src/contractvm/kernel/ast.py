"""Immutable syntax tree produced by the parser and consumed by the compiler."""

from dataclasses import dataclass, field
from typing import Optional, Tuple, Union


# ---------------------------------------------------------------------------
# Directives and types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldReference:
    path: Tuple[str, ...]


@dataclass(frozen=True)
class KeyLiteral:
    text: str  # e.g. "eth#<hex>"


DirectiveArgument = Union[FieldReference, KeyLiteral]


@dataclass(frozen=True)
class Directive:
    name: str
    arguments: Tuple[DirectiveArgument, ...] = ()
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class NamedType:
    """A primitive, PublicKey, or the name of another record."""
    name: str
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class ArrayTypeNode:
    element: "TypeNode"


@dataclass(frozen=True)
class ObjectField:
    name: str
    type: "TypeNode"


@dataclass(frozen=True)
class ObjectTypeNode:
    fields: Tuple[ObjectField, ...]


TypeNode = Union[NamedType, ArrayTypeNode, ObjectTypeNode]


# ---------------------------------------------------------------------------
# Expressions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NumberLiteral:
    text: str
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class StringLiteral:
    value: str
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class BooleanLiteral:
    value: bool
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class ArrayLiteral:
    items: Tuple["Expression", ...]
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Identifier:
    name: str
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class This:
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Member:
    object: "Expression"
    name: str
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Index:
    object: "Expression"
    index: "Expression"
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class MethodCall:
    object: "Expression"
    name: str
    args: Tuple["Expression", ...]
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Call:
    name: str
    args: Tuple["Expression", ...]
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Unary:
    op: str  # "!" or "-"
    operand: "Expression"
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Binary:
    op: str
    left: "Expression"
    right: "Expression"
    line: int = field(default=0, compare=False)


Expression = Union[
    NumberLiteral, StringLiteral, BooleanLiteral, ArrayLiteral, Identifier, This,
    Member, Index, MethodCall, Call, Unary, Binary,
]


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Block:
    statements: Tuple["Statement", ...]
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Let:
    name: str
    type: Optional[TypeNode]
    value: Expression
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Assign:
    target: Expression
    op: str  # "=", "+=", "-="
    value: Expression
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class If:
    condition: Expression
    then: "Statement"
    otherwise: Optional["Statement"]
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class While:
    condition: Expression
    body: "Statement"
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Return:
    value: Optional[Expression]
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class ExpressionStatement:
    expression: Expression
    line: int = field(default=0, compare=False)


Statement = Union[Block, Let, Assign, If, While, Return, ExpressionStatement]


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Parameter:
    name: str
    type: TypeNode
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class FieldDeclaration:
    name: str
    type: TypeNode
    directives: Tuple[Directive, ...] = ()
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class FunctionDeclaration:
    name: str
    params: Tuple[Parameter, ...]
    return_type: Optional[TypeNode]
    body: Block
    directives: Tuple[Directive, ...] = ()
    is_constructor: bool = False
    line: int = field(default=0, compare=False)


@dataclass(frozen=True)
class RecordDeclaration:
    name: str
    fields: Tuple[FieldDeclaration, ...]
    functions: Tuple[FunctionDeclaration, ...]
    directives: Tuple[Directive, ...] = ()
    line: int = field(default=0, compare=False)

    def directive(self, name: str) -> Optional[Directive]:
        for d in self.directives:
            if d.name == name:
                return d
        return None


@dataclass(frozen=True)
class Program:
    records: Tuple[RecordDeclaration, ...]
