"""Safe boolean expressions for workflow step conditions.

Grammar::

    expr       := and_expr (("or" | "||") and_expr)*
    and_expr   := not_expr (("and" | "&&") not_expr)*
    not_expr   := ("not" | "!") not_expr | comparison
    comparison := operand (("==" | "!=" | "<" | "<=" | ">" | ">=") operand)?
    operand    := NUMBER | STRING | "true" | "false" | "null"
                | NAME ("." NAME)* | "${" path "}" | "(" expr ")"

Names resolve against the execution context; unknown names are ``None``.
Nothing is ever evaluated as Python code.
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from ..errors import ConditionSyntaxError
from .params import MISSING, lookup

_TOKEN = re.compile(
    r"""
    \s*(?:
        (?P<number>-?\d+(?:\.\d+)?)
      | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<ref>\$\{[^}]+\})
      | (?P<op>==|!=|<=|>=|&&|\|\||[<>!()])
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)
    )
    """,
    re.VERBOSE,
)

_COMPARISONS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}
_KEYWORDS = {"true": True, "false": False, "null": None, "none": None}

Node = Callable[[Mapping[str, Any]], Any]


@dataclass(slots=True)
class _Token:
    kind: str
    value: str


def tokenize(text: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    stripped = text.rstrip()
    while position < len(stripped):
        match = _TOKEN.match(stripped, position)
        if match is None or match.end() == position:
            raise ConditionSyntaxError(f"Unexpected character at {position} in condition: {text!r}")
        kind = match.lastgroup or ""
        value = match.group(kind)
        if kind == "name" and value.lower() in ("and", "or", "not"):
            kind, value = "op", value.lower()
        tokens.append(_Token(kind, value))
        position = match.end()
    return tokens


def _unquote(raw: str) -> str:
    body = raw[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def _compare(symbol: str, left: Any, right: Any) -> bool:
    if symbol in ("==", "!="):
        return _COMPARISONS[symbol](left, right)
    if left is None or right is None:
        return False
    try:
        return bool(_COMPARISONS[symbol](left, right))
    except TypeError:
        return False


class _Parser:
    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    def _peek(self) -> _Token | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _accept(self, *ops: str) -> str | None:
        token = self._peek()
        if token is not None and token.kind == "op" and token.value in ops:
            self.index += 1
            return token.value
        return None

    def _fail(self, message: str) -> ConditionSyntaxError:
        return ConditionSyntaxError(f"{message} in condition: {self.text!r}")

    def parse(self) -> Node:
        if not self.tokens:
            raise self._fail("Empty expression")
        node = self._or()
        if self._peek() is not None:
            raise self._fail(f"Unexpected token '{self._peek().value}'")
        return node

    def _or(self) -> Node:
        node = self._and()
        while self._accept("or", "||"):
            left, right = node, self._and()
            node = lambda ctx, l=left, r=right: bool(l(ctx)) or bool(r(ctx))  # noqa: E731
        return node

    def _and(self) -> Node:
        node = self._not()
        while self._accept("and", "&&"):
            left, right = node, self._not()
            node = lambda ctx, l=left, r=right: bool(l(ctx)) and bool(r(ctx))  # noqa: E731
        return node

    def _not(self) -> Node:
        if self._accept("not", "!"):
            inner = self._not()
            return lambda ctx: not inner(ctx)
        return self._comparison()

    def _comparison(self) -> Node:
        left = self._operand()
        symbol = self._accept(*_COMPARISONS)
        if symbol is None:
            return left
        right = self._operand()
        return lambda ctx: _compare(symbol, left(ctx), right(ctx))

    def _operand(self) -> Node:
        token = self._peek()
        if token is None:
            raise self._fail("Unexpected end of expression")
        self.index += 1
        if token.kind == "number":
            number = float(token.value) if "." in token.value else int(token.value)
            return lambda ctx: number
        if token.kind == "string":
            text = _unquote(token.value)
            return lambda ctx: text
        if token.kind == "ref":
            path = token.value[2:-1].strip()
            return lambda ctx: _resolve(ctx, path)
        if token.kind == "name":
            if token.value.lower() in _KEYWORDS:
                constant = _KEYWORDS[token.value.lower()]
                return lambda ctx: constant
            path = token.value
            return lambda ctx: _resolve(ctx, path)
        if token.value == "(":
            node = self._or()
            if not self._accept(")"):
                raise self._fail("Missing closing parenthesis")
            return node
        raise self._fail(f"Unexpected token '{token.value}'")


def _resolve(context: Mapping[str, Any], path: str) -> Any:
    value = lookup(context, path)
    return None if value is MISSING else value


class Condition:
    """A parsed condition, reusable across evaluations."""

    def __init__(self, text: str) -> None:
        self.text = text
        self._node = _Parser(text).parse()

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        return bool(self._node(context))

    def __repr__(self) -> str:
        return f"Condition({self.text!r})"


def compile_condition(text: str) -> Condition:
    return Condition(text)


def evaluate_condition(text: str, context: Mapping[str, Any]) -> bool:
    return Condition(text).evaluate(context)


__all__ = ["Condition", "compile_condition", "evaluate_condition", "tokenize"]
