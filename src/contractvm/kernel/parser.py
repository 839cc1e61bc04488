"""Source parser: lark LALR grammar plus a Transformer into ``ast`` dataclasses."""

import logging
from functools import lru_cache

from lark import Lark, Transformer, v_args
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken

from . import ast
from .errors import ParseError

logger = logging.getLogger(__name__)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "\\": "\\", '"': '"', "'": "'"}


@lru_cache(maxsize=1)
def get_parser() -> Lark:
    return Lark.open(
        "grammar.lark",
        rel_to=__file__,
        parser="lalr",
        propagate_positions=True,
        maybe_placeholders=True,
    )


def _line(meta) -> int:
    return getattr(meta, "line", 0) or 0


def _unescape(raw: str) -> str:
    body = raw[1:-1]
    out = []
    i = 0
    while i < len(body):
        ch = body[i]
        if ch == "\\" and i + 1 < len(body):
            nxt = body[i + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _split_directives(children):
    directives = tuple(c for c in children if isinstance(c, ast.Directive))
    rest = [c for c in children if not isinstance(c, ast.Directive)]
    return directives, rest


@v_args(meta=True)
class AstBuilder(Transformer):
    """Turns the lark parse tree into immutable AST nodes."""

    # Declarations

    def start(self, meta, children):
        return ast.Program(records=tuple(children))

    def declaration(self, meta, children):
        directives, rest = _split_directives(children)
        name, members = rest[0], rest[1:]
        fields = tuple(m for m in members if isinstance(m, ast.FieldDeclaration))
        functions = tuple(m for m in members if isinstance(m, ast.FunctionDeclaration))
        return ast.RecordDeclaration(
            name=str(name), fields=fields, functions=functions,
            directives=directives, line=_line(meta),
        )

    def directive(self, meta, children):
        name, args = children
        return ast.Directive(name=str(name), arguments=tuple(args or ()), line=_line(meta))

    def directive_args(self, meta, children):
        return list(children)

    def field_path(self, meta, children):
        return ast.FieldReference(path=tuple(str(c) for c in children))

    def key_literal(self, meta, children):
        return ast.KeyLiteral(text=str(children[0]))

    def member_decl(self, meta, children):
        directives, rest = _split_directives(children)
        decl = rest[0]
        if isinstance(decl, ast.FieldDeclaration):
            return ast.FieldDeclaration(decl.name, decl.type, directives, decl.line)
        return ast.FunctionDeclaration(
            name=decl.name, params=decl.params, return_type=decl.return_type, body=decl.body,
            directives=directives, is_constructor=decl.is_constructor, line=decl.line,
        )

    def field_decl(self, meta, children):
        name, type_ = children
        return ast.FieldDeclaration(name=str(name), type=type_, line=_line(meta))

    def function_decl(self, meta, children):
        name, params, return_type, body = children
        return ast.FunctionDeclaration(
            name=str(name), params=tuple(params or ()), return_type=return_type,
            body=body, line=_line(meta),
        )

    def constructor_decl(self, meta, children):
        params, body = children
        return ast.FunctionDeclaration(
            name="constructor", params=tuple(params or ()), return_type=None,
            body=body, is_constructor=True, line=_line(meta),
        )

    def params(self, meta, children):
        return list(children)

    def param(self, meta, children):
        name, type_ = children
        return ast.Parameter(name=str(name), type=type_, line=_line(meta))

    # Types

    def named_type(self, meta, children):
        return ast.NamedType(name=str(children[0]), line=_line(meta))

    def array_type(self, meta, children):
        return ast.ArrayTypeNode(element=children[0])

    def object_type(self, meta, children):
        return ast.ObjectTypeNode(fields=tuple(children))

    def object_field(self, meta, children):
        name, type_ = children
        return ast.ObjectField(name=str(name), type=type_)

    # Statements

    def block(self, meta, children):
        return ast.Block(statements=tuple(children), line=_line(meta))

    def let_stmt(self, meta, children):
        name, type_, value = children
        return ast.Let(name=str(name), type=type_, value=value, line=_line(meta))

    def if_stmt(self, meta, children):
        condition, then, otherwise = children
        return ast.If(condition=condition, then=then, otherwise=otherwise, line=_line(meta))

    def while_stmt(self, meta, children):
        condition, body = children
        return ast.While(condition=condition, body=body, line=_line(meta))

    def return_stmt(self, meta, children):
        return ast.Return(value=children[0], line=_line(meta))

    def assign_stmt(self, meta, children):
        target, op, value = children
        return ast.Assign(target=target, op=op, value=value, line=_line(meta))

    def assign_op(self, meta, children):
        return str(children[0])

    def expr_stmt(self, meta, children):
        return ast.ExpressionStatement(expression=children[0], line=_line(meta))

    # Expressions

    def _binary(self, op, meta, children):
        left, right = children
        return ast.Binary(op=op, left=left, right=right, line=_line(meta))

    def or_(self, meta, children):
        return self._binary("||", meta, children)

    def and_(self, meta, children):
        return self._binary("&&", meta, children)

    def eq(self, meta, children):
        return self._binary("==", meta, children)

    def ne(self, meta, children):
        return self._binary("!=", meta, children)

    def lt(self, meta, children):
        return self._binary("<", meta, children)

    def le(self, meta, children):
        return self._binary("<=", meta, children)

    def gt(self, meta, children):
        return self._binary(">", meta, children)

    def ge(self, meta, children):
        return self._binary(">=", meta, children)

    def add(self, meta, children):
        return self._binary("+", meta, children)

    def sub(self, meta, children):
        return self._binary("-", meta, children)

    def mul(self, meta, children):
        return self._binary("*", meta, children)

    def div(self, meta, children):
        return self._binary("/", meta, children)

    def mod(self, meta, children):
        return self._binary("%", meta, children)

    def not_(self, meta, children):
        return ast.Unary(op="!", operand=children[0], line=_line(meta))

    def neg(self, meta, children):
        return ast.Unary(op="-", operand=children[0], line=_line(meta))

    def member(self, meta, children):
        obj, name = children
        return ast.Member(object=obj, name=str(name), line=_line(meta))

    def method_call(self, meta, children):
        obj, name, args = children
        return ast.MethodCall(object=obj, name=str(name), args=tuple(args or ()), line=_line(meta))

    def index(self, meta, children):
        obj, idx = children
        return ast.Index(object=obj, index=idx, line=_line(meta))

    def call(self, meta, children):
        name, args = children
        return ast.Call(name=str(name), args=tuple(args or ()), line=_line(meta))

    def args(self, meta, children):
        return list(children)

    def number(self, meta, children):
        return ast.NumberLiteral(text=str(children[0]), line=_line(meta))

    def string(self, meta, children):
        return ast.StringLiteral(value=_unescape(str(children[0])), line=_line(meta))

    def true(self, meta, children):
        return ast.BooleanLiteral(value=True, line=_line(meta))

    def false(self, meta, children):
        return ast.BooleanLiteral(value=False, line=_line(meta))

    def this(self, meta, children):
        return ast.This(line=_line(meta))

    def var(self, meta, children):
        return ast.Identifier(name=str(children[0]), line=_line(meta))

    def array(self, meta, children):
        return ast.ArrayLiteral(items=tuple(children[0] or ()), line=_line(meta))


def parse_program(source: str) -> ast.Program:
    """Parse source text into a Program.

    Raises:
        ParseError: the text does not match the grammar
    """
    try:
        tree = get_parser().parse(source)
    except UnexpectedInput as e:
        line = e.line if (e.line or 0) > 0 else None
        column = e.column if (e.column or 0) > 0 else None
        raise ParseError(_describe(e), line=line, column=column) from e
    program = AstBuilder().transform(tree)
    logger.debug("parsed %d record declaration(s)", len(program.records))
    return program


def _describe(e: UnexpectedInput) -> str:
    if isinstance(e, UnexpectedEOF):
        return "Unexpected end of input"
    if isinstance(e, UnexpectedToken):
        return f"Unexpected token {e.token!s}"
    if isinstance(e, UnexpectedCharacters):
        return f"Unexpected character {e.char!r}"
    return "Syntax error"
