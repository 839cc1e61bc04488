"""Declared record schemas: type resolution and duplicate checks."""

from dataclasses import dataclass
from typing import Dict, Optional

from contractvm.codes import ErrorCode

from . import ast
from .errors import CompileError
from .types import (
    PRIMITIVE_ALIASES,
    PUBLIC_KEY,
    ArrayType,
    ContractReferenceType,
    Primitive,
    PrimitiveType,
    StructField,
    StructType,
)

PUBLIC_KEY_TYPE_NAME = "PublicKey"

_PRIMITIVES_BY_NAME = {p.value: p for p in Primitive}
_PRIMITIVES_BY_NAME.update(PRIMITIVE_ALIASES)


@dataclass(frozen=True)
class RecordSchema:
    declaration: ast.RecordDeclaration
    struct: StructType

    @property
    def name(self) -> str:
        return self.declaration.name

    def field(self, name: str) -> Optional[ast.FieldDeclaration]:
        for f in self.declaration.fields:
            if f.name == name:
                return f
        return None

    def function(self, name: str) -> Optional[ast.FunctionDeclaration]:
        for fn in self.declaration.functions:
            if fn.name == name:
                return fn
        return None

    def constructor(self) -> Optional[ast.FunctionDeclaration]:
        for fn in self.declaration.functions:
            if fn.is_constructor:
                return fn
        return None


class Schema:
    """All record declarations of one program, with resolved field types."""

    def __init__(self, program: ast.Program):
        self._declarations: Dict[str, ast.RecordDeclaration] = {}
        for record in program.records:
            if record.name in self._declarations:
                raise CompileError(
                    f"Record '{record.name}' is declared more than once",
                    ErrorCode.DUPLICATE_DECLARATION, record.line,
                )
            self._declarations[record.name] = record
        self._records: Dict[str, RecordSchema] = {}
        for record in program.records:
            self._check_members(record)
            fields = tuple(
                StructField(name=f.name, type=self.resolve_type(f.type, f.line))
                for f in record.fields
            )
            self._records[record.name] = RecordSchema(record, StructType(name=record.name, fields=fields))

    @staticmethod
    def _check_members(record: ast.RecordDeclaration) -> None:
        seen = set()
        constructors = 0
        for member in list(record.fields) + list(record.functions):
            if isinstance(member, ast.FunctionDeclaration) and member.is_constructor:
                constructors += 1
                if constructors > 1:
                    raise CompileError(
                        f"Record '{record.name}' declares more than one constructor",
                        ErrorCode.DUPLICATE_DECLARATION, member.line,
                    )
                continue
            if member.name in seen:
                raise CompileError(
                    f"'{member.name}' is declared more than once in '{record.name}'",
                    ErrorCode.DUPLICATE_DECLARATION, member.line,
                )
            seen.add(member.name)

    def __contains__(self, name: str) -> bool:
        return name in self._records

    def record(self, name: str) -> RecordSchema:
        try:
            return self._records[name]
        except KeyError:
            raise CompileError(f"Contract not found: {name}", ErrorCode.UNKNOWN_CONTRACT)

    def resolve_type(self, node: ast.TypeNode, line: int = 0):
        if isinstance(node, ast.NamedType):
            if node.name in _PRIMITIVES_BY_NAME:
                return PrimitiveType(primitive=_PRIMITIVES_BY_NAME[node.name])
            if node.name == PUBLIC_KEY_TYPE_NAME:
                return PUBLIC_KEY
            if node.name in self._declarations:
                return ContractReferenceType(contract=node.name)
            raise CompileError(f"Unknown type '{node.name}'", ErrorCode.UNKNOWN_TYPE, node.line or line)
        if isinstance(node, ast.ArrayTypeNode):
            return ArrayType(element=self.resolve_type(node.element, line))
        if isinstance(node, ast.ObjectTypeNode):
            names = [f.name for f in node.fields]
            if len(set(names)) != len(names):
                raise CompileError("Object type has duplicate fields", ErrorCode.DUPLICATE_DECLARATION, line)
            return StructType(
                name="",
                fields=tuple(StructField(name=f.name, type=self.resolve_type(f.type, line)) for f in node.fields),
            )
        raise CompileError(f"Unsupported type node {node!r}", ErrorCode.UNSUPPORTED, line)
