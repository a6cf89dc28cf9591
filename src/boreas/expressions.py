"""Small expression language used for forcing functions.

Expressions use prefix call syntax with ``%name%`` placeholders, for example::

    multiply(%Delta%, pow(%stepNumber%, -1))

They are parsed once into a typed syntax tree and evaluated against a mapping of
placeholder bindings.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Mapping, Tuple

from .errors import ConfigurationError


class UnboundPlaceholderError(KeyError):
    """Raised when an expression references a placeholder without a binding."""


def _divide(a: float, b: float) -> float:
    if b == 0:
        raise ZeroDivisionError("division by zero in expression")
    return a / b


FUNCTIONS: Dict[str, Tuple[int, Callable[..., float]]] = {
    "add": (2, lambda a, b: a + b),
    "subtract": (2, lambda a, b: a - b),
    "multiply": (2, lambda a, b: a * b),
    "divide": (2, _divide),
    "pow": (2, math.pow),
    "min": (2, min),
    "max": (2, max),
    "exp": (1, math.exp),
    "log": (1, math.log),
    "log10": (1, math.log10),
    "sqrt": (1, math.sqrt),
    "abs": (1, abs),
    "sin": (1, math.sin),
    "cos": (1, math.cos),
    "tan": (1, math.tan),
}
"""Supported functions with their arity."""


@dataclass(frozen=True)
class Number:
    value: float

    def evaluate(self, bindings: Mapping[str, float]) -> float:
        return self.value


@dataclass(frozen=True)
class Placeholder:
    name: str

    def evaluate(self, bindings: Mapping[str, float]) -> float:
        try:
            return float(bindings[self.name])
        except KeyError as exc:
            raise UnboundPlaceholderError(self.name) from exc


@dataclass(frozen=True)
class Call:
    function: str
    arguments: Tuple["Node", ...]

    def evaluate(self, bindings: Mapping[str, float]) -> float:
        _, implementation = FUNCTIONS[self.function]
        values = [argument.evaluate(bindings) for argument in self.arguments]
        return float(implementation(*values))


Node = Number | Placeholder | Call


_TOKEN = re.compile(
    r"\s*(?:"
    r"(?P<number>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)"
    r"|%(?P<placeholder>[A-Za-z_][\w.]*)%"
    r"|(?P<name>[A-Za-z_]\w*)"
    r"|(?P<punct>[(),])"
    r")"
)


def _tokenize(source: str) -> list[tuple[str, str]]:
    tokens: list[tuple[str, str]] = []
    position = 0
    stripped = source.rstrip()
    while position < len(stripped):
        match = _TOKEN.match(stripped, position)
        if match is None or match.end() == position:
            raise ConfigurationError(
                f"Cannot parse expression {source!r} at position {position}"
            )
        kind = match.lastgroup or ""
        tokens.append((kind, match.group(kind)))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = _tokenize(source)
        self.position = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise ConfigurationError("Expression must not be empty")
        node = self._expression()
        if self.position != len(self.tokens):
            raise ConfigurationError(f"Unexpected trailing input in expression {self.source!r}")
        return node

    def _next(self) -> tuple[str, str]:
        if self.position >= len(self.tokens):
            raise ConfigurationError(f"Unexpected end of expression {self.source!r}")
        token = self.tokens[self.position]
        self.position += 1
        return token

    def _expect(self, symbol: str) -> None:
        kind, text = self._next()
        if kind != "punct" or text != symbol:
            raise ConfigurationError(f"Expected {symbol!r} in expression {self.source!r}, got {text!r}")

    def _expression(self) -> Node:
        kind, text = self._next()
        if kind == "number":
            return Number(float(text))
        if kind == "placeholder":
            return Placeholder(text)
        if kind == "name":
            if text not in FUNCTIONS:
                raise ConfigurationError(
                    f"Unknown function {text!r} in expression {self.source!r}; supported: "
                    + ", ".join(sorted(FUNCTIONS))
                )
            self._expect("(")
            arguments = [self._expression()]
            while True:
                kind, symbol = self._next()
                if kind == "punct" and symbol == ",":
                    arguments.append(self._expression())
                    continue
                if kind == "punct" and symbol == ")":
                    break
                raise ConfigurationError(f"Expected ',' or ')' in expression {self.source!r}")
            arity, _ = FUNCTIONS[text]
            if len(arguments) != arity:
                raise ConfigurationError(
                    f"Function {text!r} expects {arity} argument(s), got {len(arguments)}"
                )
            return Call(text, tuple(arguments))
        raise ConfigurationError(f"Unexpected token {text!r} in expression {self.source!r}")


def _collect_placeholders(node: Node) -> set[str]:
    if isinstance(node, Placeholder):
        return {node.name}
    if isinstance(node, Call):
        names: set[str] = set()
        for argument in node.arguments:
            names |= _collect_placeholders(argument)
        return names
    return set()


class Expression:
    """Parsed expression with its original source text."""

    def __init__(self, source: str) -> None:
        self.source = source.strip()
        self.root: Node = _Parser(self.source).parse()
        self.placeholders: FrozenSet[str] = frozenset(_collect_placeholders(self.root))

    def evaluate(self, bindings: Mapping[str, float] | None = None) -> float:
        return self.root.evaluate(bindings or {})

    def __repr__(self) -> str:
        return f"Expression({self.source!r})"


__all__ = [
    "Call",
    "Expression",
    "FUNCTIONS",
    "Number",
    "Placeholder",
    "UnboundPlaceholderError",
]
