"""
Predicate and assignment expressions.

Queries accept small boolean expressions written as strings::

    Post.query().filter("e => e.views > 10 && e.title != null")
    Post.query().like("title == {0} || slug == {0}", "%python%")
    Post.query().update_all("views == 0 && title == :title", title="Draft")

The text is tokenized and parsed into an AST by a recursive-descent parser
(no ``eval``), then compiled into a builder fragment whose identifiers are
:class:`~keystone.orm.builder.SqlId` wrappers and whose values are bound
parameters.

Grammar::

    expr     := lambda? or_expr
    lambda   := IDENT '=>'
    or_expr  := and_expr (('||' | 'or') and_expr)*
    and_expr := not_expr (('&&' | 'and') not_expr)*
    not_expr := ('!' | 'not') not_expr | compare
    compare  := operand (('=='|'!='|'<'|'<='|'>'|'>=') operand)?
    operand  := member | literal | param | '(' or_expr ')'
    member   := IDENT ('.' IDENT)?
    literal  := STRING | NUMBER | true | false | null | None
    param    := '{' INT '}' | ':' IDENT

Three compilation modes share the AST:

- ``compile_predicate``: SQL comparisons; ``== null`` becomes ``IS NULL``;
- ``compile_like``: ``==`` becomes ``LIKE`` and ``!=`` becomes ``NOT LIKE``;
- ``compile_assignments``: ``&&``/``||`` separate ``column = value`` pairs.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from keystone.core.errors import ExpressionSyntaxError
from keystone.orm.builder import SqlId
from keystone.orm.fields import PropertyTable

# -- Tokens --------------------------------------------------------------------

IDENT = "IDENT"
NUMBER = "NUMBER"
STRING = "STRING"
OP = "OP"
PARAM = "PARAM"
EOF = "EOF"

_OPERATORS = ("=>", "==", "!=", "<=", ">=", "&&", "||", "<", ">", "!", "(", ")", ".")
_KEYWORD_OPS = {"and": "&&", "or": "||", "not": "!"}
_LITERALS = {"true": True, "false": False, "null": None, "none": None}
_COMPARISONS = ("==", "!=", "<", "<=", ">", ">=")


@dataclass(frozen=True)
class Token:
    kind: str
    value: Any
    position: int


def tokenize(text: str) -> list[Token]:
    """Split ``text`` into tokens; raises :class:`ExpressionSyntaxError` on junk."""
    tokens: list[Token] = []
    i = 0
    length = len(text)
    while i < length:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue

        if ch in "'\"":
            start, quote = i, ch
            i += 1
            chars = []
            while i < length and text[i] != quote:
                if text[i] == "\\" and i + 1 < length:
                    i += 1
                chars.append(text[i])
                i += 1
            if i >= length:
                raise ExpressionSyntaxError("Unterminated string", text=text, position=start)
            i += 1
            tokens.append(Token(STRING, "".join(chars), start))
            continue

        negative = ch == "-" and i + 1 < length and text[i + 1].isdigit() and (
            not tokens or tokens[-1].kind == OP and tokens[-1].value not in (")",)
        )
        if ch.isdigit() or negative:
            start = i
            i += 1
            while i < length and (text[i].isdigit() or text[i] in "._"):
                i += 1
            raw = text[start:i].replace("_", "")
            try:
                value: Any = float(raw) if "." in raw else int(raw)
            except ValueError:
                raise ExpressionSyntaxError(f"Malformed number {raw!r}", text=text, position=start) from None
            tokens.append(Token(NUMBER, value, start))
            continue

        if ch.isalpha() or ch == "_":
            start = i
            while i < length and (text[i].isalnum() or text[i] == "_"):
                i += 1
            word = text[start:i]
            lowered = word.lower()
            if lowered in _KEYWORD_OPS:
                tokens.append(Token(OP, _KEYWORD_OPS[lowered], start))
            else:
                tokens.append(Token(IDENT, word, start))
            continue

        if ch == "{":
            start = i
            end = text.find("}", i)
            digits = text[i + 1:end] if end != -1 else ""
            if not digits.isdigit():
                raise ExpressionSyntaxError("Malformed positional parameter", text=text, position=start)
            tokens.append(Token(PARAM, int(digits), start))
            i = end + 1
            continue

        if ch == ":" and i + 1 < length and (text[i + 1].isalpha() or text[i + 1] == "_"):
            start = i
            i += 1
            while i < length and (text[i].isalnum() or text[i] == "_"):
                i += 1
            tokens.append(Token(PARAM, text[start + 1:i], start))
            continue

        for op in _OPERATORS:
            if text.startswith(op, i):
                tokens.append(Token(OP, op, i))
                i += len(op)
                break
        else:
            raise ExpressionSyntaxError(f"Unexpected character {ch!r}", text=text, position=i)

    tokens.append(Token(EOF, None, length))
    return tokens


# -- AST -----------------------------------------------------------------------


@dataclass(frozen=True)
class Member:
    name: str
    position: int


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Param:
    key: int | str
    position: int


@dataclass(frozen=True)
class Compare:
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class BoolOp:
    op: str  # "&&" or "||"
    operands: tuple[Any, ...]


@dataclass(frozen=True)
class Not:
    operand: Any


Node = Member | Literal | Param | Compare | BoolOp | Not


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.pos = 0
        self.alias: str | None = None

    # helpers
    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.pos + offset, len(self.tokens) - 1)]

    def advance(self) -> Token:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def at_op(self, *ops: str) -> bool:
        token = self.peek()
        return token.kind == OP and token.value in ops

    def expect_op(self, op: str) -> Token:
        if not self.at_op(op):
            self.fail(f"Expected {op!r}")
        return self.advance()

    def fail(self, message: str) -> None:
        token = self.peek()
        raise ExpressionSyntaxError(message, text=self.text, position=token.position)

    # grammar
    def parse(self) -> Node:
        if self.peek().kind == IDENT and self.peek(1).kind == OP and self.peek(1).value == "=>":
            self.alias = self.advance().value
            self.advance()
        if self.peek().kind == EOF:
            self.fail("Empty expression")
        node = self.or_expr()
        if self.peek().kind != EOF:
            self.fail(f"Unexpected {self.peek().value!r}")
        return node

    def or_expr(self) -> Node:
        operands = [self.and_expr()]
        while self.at_op("||"):
            self.advance()
            operands.append(self.and_expr())
        return operands[0] if len(operands) == 1 else BoolOp("||", tuple(operands))

    def and_expr(self) -> Node:
        operands = [self.not_expr()]
        while self.at_op("&&"):
            self.advance()
            operands.append(self.not_expr())
        return operands[0] if len(operands) == 1 else BoolOp("&&", tuple(operands))

    def not_expr(self) -> Node:
        if self.at_op("!"):
            self.advance()
            return Not(self.not_expr())
        return self.compare()

    def compare(self) -> Node:
        left = self.operand()
        if self.at_op(*_COMPARISONS):
            op = self.advance().value
            right = self.operand()
            return Compare(op, left, right)
        return left

    def operand(self) -> Node:
        token = self.peek()
        if token.kind == OP and token.value == "(":
            self.advance()
            node = self.or_expr()
            self.expect_op(")")
            return node
        if token.kind in (NUMBER, STRING):
            self.advance()
            return Literal(token.value)
        if token.kind == PARAM:
            self.advance()
            return Param(token.value, token.position)
        if token.kind == IDENT:
            return self.member()
        self.fail("Expected an operand")
        raise AssertionError("unreachable")

    def member(self) -> Node:
        token = self.advance()
        if token.value.lower() in _LITERALS and not self.at_op("."):
            return Literal(_LITERALS[token.value.lower()])
        if self.at_op("."):
            self.advance()
            attr = self.peek()
            if attr.kind != IDENT:
                self.fail("Expected a property name after '.'")
            self.advance()
            if self.alias is not None and token.value != self.alias:
                raise ExpressionSyntaxError(
                    f"Unknown alias {token.value!r} (expected {self.alias!r})",
                    text=self.text,
                    position=token.position,
                )
            return Member(attr.value, attr.position)
        return Member(token.value, token.position)


def parse(text: str) -> Node:
    """Parse an expression string into its AST."""
    return _Parser(text).parse()


# -- Compilation -----------------------------------------------------------------


@dataclass(frozen=True)
class Fragment:
    """Builder-ready text with ``{n}`` placeholders and their arguments."""

    text: str
    args: tuple[Any, ...]


_SQL_OPS = {"==": "=", "!=": "<>", "<": "<", "<=": "<=", ">": ">", ">=": ">="}
_LIKE_OPS = {"==": "LIKE", "!=": "NOT LIKE"}


class _Compiler:
    def __init__(
        self,
        text: str,
        table: PropertyTable,
        args: Sequence[Any],
        named: Mapping[str, Any],
        like: bool = False,
    ) -> None:
        self.text = text
        self.table = table
        self.args = args
        self.named = named
        self.like = like
        self.out_args: list[Any] = []

    def fail(self, message: str, position: int = 0) -> None:
        raise ExpressionSyntaxError(message, text=self.text, position=position)

    def arg(self, value: Any) -> str:
        self.out_args.append(value)
        return "{%d}" % (len(self.out_args) - 1)

    def column(self, node: Member) -> SqlId:
        info = self.table.resolve_member(node.name)
        if info is None or info.column is None:
            self.fail(f"{self.table.model.__name__} has no column property {node.name!r}", node.position)
        return SqlId(info.column)

    def value_of(self, node: Any) -> tuple[bool, Any]:
        """(is_value, value) for literals and parameters."""
        if isinstance(node, Literal):
            return True, node.value
        if isinstance(node, Param):
            if isinstance(node.key, int):
                if node.key >= len(self.args):
                    self.fail(f"No argument for parameter {{{node.key}}}", node.position)
                return True, self.args[node.key]
            if node.key not in self.named:
                self.fail(f"No value for parameter :{node.key}", node.position)
            return True, self.named[node.key]
        return False, None

    def operand(self, node: Any) -> str:
        if isinstance(node, Member):
            return self.arg(self.column(node))
        is_value, value = self.value_of(node)
        if is_value:
            return "NULL" if value is None else self.arg(value)
        return self.expr(node)

    def expr(self, node: Any) -> str:
        if isinstance(node, BoolOp):
            joiner = " AND " if node.op == "&&" else " OR "
            return "(" + joiner.join(self.expr(n) for n in node.operands) + ")"
        if isinstance(node, Not):
            return f"NOT {self.expr(node.operand)}"
        if isinstance(node, Compare):
            return self.compare(node)
        # A bare operand is a truth test.
        return f"({self.operand(node)} = {self.arg(True)})"

    def compare(self, node: Compare) -> str:
        left_null = self.value_of(node.left) == (True, None)
        right_null = self.value_of(node.right) == (True, None)
        if (left_null or right_null) and node.op in ("==", "!="):
            other = node.right if left_null else node.left
            keyword = "IS NULL" if node.op == "==" else "IS NOT NULL"
            return f"({self.operand(other)} {keyword})"
        ops = _LIKE_OPS if self.like and node.op in _LIKE_OPS else _SQL_OPS
        return f"({self.operand(node.left)} {ops[node.op]} {self.operand(node.right)})"

    def assignments(self, node: Any) -> str:
        parts = node.operands if isinstance(node, BoolOp) else (node,)
        rendered = []
        for part in parts:
            if isinstance(part, BoolOp):
                rendered.append(self.assignments(part))
                continue
            if not isinstance(part, Compare) or part.op != "==" or not isinstance(part.left, Member):
                self.fail("Assignments must have the form 'property == value'")
            is_value, value = self.value_of(part.right)
            if not is_value:
                self.fail("Assigned value must be a literal or parameter", getattr(part.right, "position", 0))
            rendered.append(f"{self.arg(self.column(part.left))} = {'NULL' if value is None else self.arg(value)}")
        return ", ".join(rendered)


def _source(expression: str | Node) -> tuple[str, Node]:
    if isinstance(expression, str):
        return expression, parse(expression)
    return repr(expression), expression


def compile_predicate(
    expression: str | Node, table: PropertyTable, args: Sequence[Any] = (), named: Mapping[str, Any] | None = None
) -> Fragment:
    """Compile a boolean expression into a WHERE fragment."""
    text, node = _source(expression)
    compiler = _Compiler(text, table, args, named or {})
    return Fragment(compiler.expr(node), tuple(compiler.out_args))


def compile_like(
    expression: str | Node, table: PropertyTable, args: Sequence[Any] = (), named: Mapping[str, Any] | None = None
) -> Fragment:
    """Compile a boolean expression with ``==``/``!=`` as ``LIKE``/``NOT LIKE``."""
    text, node = _source(expression)
    compiler = _Compiler(text, table, args, named or {}, like=True)
    return Fragment(compiler.expr(node), tuple(compiler.out_args))


def compile_assignments(
    expression: str | Node, table: PropertyTable, args: Sequence[Any] = (), named: Mapping[str, Any] | None = None
) -> Fragment:
    """Compile ``a == 1 && b == 2`` into a ``SET`` fragment."""
    text, node = _source(expression)
    compiler = _Compiler(text, table, args, named or {})
    return Fragment(compiler.assignments(node), tuple(compiler.out_args))


__all__ = [
    "Token",
    "tokenize",
    "parse",
    "Member",
    "Literal",
    "Param",
    "Compare",
    "BoolOp",
    "Not",
    "Fragment",
    "compile_predicate",
    "compile_like",
    "compile_assignments",
]
