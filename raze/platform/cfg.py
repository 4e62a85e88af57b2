"""Parser and evaluator for cargo platform predicates.

Cargo restricts dependencies with either a literal target triple
(``x86_64-pc-windows-msvc``) or a ``cfg(...)`` expression:

    cfg(all(unix, not(target_os = "macos")))
    cfg(any(target_arch = "x86", target_arch = "x86_64"))

Parsing is cached per predicate string so repeated classification of the
same predicate stays cheap.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple, Union

from ..errors import MalformedMetadata
from ..models import TargetPlatform

_TOKEN = re.compile(
    r"""
    \s*(?:
        (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
      | (?P<string>"(?:[^"\\]|\\.)*")
      | (?P<punct>[(),=])
    )
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class CfgOption:
    """``key`` or ``key = "value"``."""

    key: str
    value: Optional[str] = None

    def evaluate(self, platform: TargetPlatform) -> bool:
        return platform.has(self.key, self.value)


@dataclass(frozen=True)
class CfgAll:
    items: Tuple["CfgExpr", ...]

    def evaluate(self, platform: TargetPlatform) -> bool:
        return all(item.evaluate(platform) for item in self.items)


@dataclass(frozen=True)
class CfgAny:
    items: Tuple["CfgExpr", ...]

    def evaluate(self, platform: TargetPlatform) -> bool:
        return any(item.evaluate(platform) for item in self.items)


@dataclass(frozen=True)
class CfgNot:
    item: "CfgExpr"

    def evaluate(self, platform: TargetPlatform) -> bool:
        return not self.item.evaluate(platform)


@dataclass(frozen=True)
class TripleMatch:
    """A bare target triple predicate."""

    triple: str

    def evaluate(self, platform: TargetPlatform) -> bool:
        return platform.triple == self.triple


CfgExpr = Union[CfgOption, CfgAll, CfgAny, CfgNot]
Predicate = Union[CfgExpr, TripleMatch]


@lru_cache(maxsize=None)
def parse_predicate(text: str) -> Predicate:
    """Parse a cargo platform predicate; raise MalformedMetadata when invalid."""
    stripped = text.strip()
    if not stripped:
        raise MalformedMetadata("Empty platform predicate")
    if not stripped.startswith("cfg("):
        if any(char.isspace() or char in '(),="' for char in stripped):
            raise MalformedMetadata(f"Invalid target triple predicate: {text!r}")
        return TripleMatch(stripped)

    tokens = _tokenize(stripped)
    parser = _Parser(tokens, text)
    parser.expect("ident", "cfg")
    parser.expect("punct", "(")
    expr = parser.parse_expr()
    parser.expect("punct", ")")
    if not parser.at_end():
        raise MalformedMetadata(f"Unexpected trailing input in predicate: {text!r}")
    return expr


def evaluate(text: str, platform: TargetPlatform) -> bool:
    """Evaluate a predicate string for one platform."""
    return parse_predicate(text).evaluate(platform)


def _tokenize(text: str) -> List[Tuple[str, str]]:
    tokens: List[Tuple[str, str]] = []
    position = 0
    while position < len(text):
        if text[position:].strip() == "":
            break
        match = _TOKEN.match(text, position)
        if match is None:
            raise MalformedMetadata(f"Invalid character in predicate {text!r} at offset {position}")
        kind = match.lastgroup or ""
        value = match.group(kind)
        if kind == "string":
            value = re.sub(r"\\(.)", r"\1", value[1:-1])
        tokens.append((kind, value))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, tokens: List[Tuple[str, str]], source: str) -> None:
        self._tokens = tokens
        self._index = 0
        self._source = source

    def at_end(self) -> bool:
        return self._index >= len(self._tokens)

    def peek(self) -> Optional[Tuple[str, str]]:
        if self.at_end():
            return None
        return self._tokens[self._index]

    def next(self) -> Tuple[str, str]:
        token = self.peek()
        if token is None:
            raise MalformedMetadata(f"Unexpected end of predicate: {self._source!r}")
        self._index += 1
        return token

    def expect(self, kind: str, value: str | None = None) -> str:
        token_kind, token_value = self.next()
        if token_kind != kind or (value is not None and token_value != value):
            wanted = value or kind
            raise MalformedMetadata(
                f"Expected {wanted!r} but found {token_value!r} in predicate: {self._source!r}"
            )
        return token_value

    def parse_expr(self) -> CfgExpr:
        name = self.expect("ident")
        if name in {"all", "any", "not"} and self.peek() == ("punct", "("):
            self.next()
            items = self._parse_list()
            if name == "not":
                if len(items) != 1:
                    raise MalformedMetadata(
                        f"not() takes exactly one predicate: {self._source!r}"
                    )
                return CfgNot(items[0])
            return CfgAll(tuple(items)) if name == "all" else CfgAny(tuple(items))
        if self.peek() == ("punct", "="):
            self.next()
            return CfgOption(name, self.expect("string"))
        return CfgOption(name)

    def _parse_list(self) -> List[CfgExpr]:
        items: List[CfgExpr] = []
        while self.peek() != ("punct", ")"):
            items.append(self.parse_expr())
            if self.peek() == ("punct", ","):
                self.next()
            elif self.peek() != ("punct", ")"):
                raise MalformedMetadata(f"Expected ',' or ')' in predicate: {self._source!r}")
        self.next()
        return items


__all__ = [
    "CfgAll",
    "CfgAny",
    "CfgNot",
    "CfgOption",
    "TripleMatch",
    "evaluate",
    "parse_predicate",
]
