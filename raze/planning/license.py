"""Map SPDX license expressions onto Bazel license kinds."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from ..models import LicenseInfo

# Ordered from least to most restrictive.
KIND_ORDER = (
    "unencumbered",
    "permissive",
    "notice",
    "reciprocal",
    "restricted",
    "by_exception_only",
)

_KINDS: Dict[str, str] = {
    "0BSD": "unencumbered",
    "CC0-1.0": "unencumbered",
    "Unlicense": "unencumbered",
    "WTFPL": "permissive",
    "Apache-2.0": "notice",
    "BSD-2-Clause": "notice",
    "BSD-3-Clause": "notice",
    "BSL-1.0": "notice",
    "ISC": "notice",
    "MIT": "notice",
    "MIT-0": "notice",
    "OpenSSL": "notice",
    "Unicode-3.0": "notice",
    "Unicode-DFS-2016": "notice",
    "X11": "notice",
    "Zlib": "notice",
    "CDDL-1.0": "reciprocal",
    "EPL-1.0": "reciprocal",
    "EPL-2.0": "reciprocal",
    "MPL-1.1": "reciprocal",
    "MPL-2.0": "reciprocal",
    "AGPL-3.0": "restricted",
    "GPL-2.0": "restricted",
    "GPL-3.0": "restricted",
    "LGPL-2.1": "restricted",
    "LGPL-3.0": "restricted",
}

_TOKEN = re.compile(r"\(|\)|[^\s()]+")


def classify_license(expression: Optional[str]) -> LicenseInfo:
    """Classify a license expression; OR picks the least restrictive branch."""
    if not expression or not expression.strip():
        return LicenseInfo(kind="restricted", name="no license", raw=None)

    # Legacy cargo manifests separate alternatives with '/'.
    normalised = expression.replace("/", " OR ")
    tokens = _TOKEN.findall(normalised)
    parser = _ExpressionParser(tokens)
    try:
        rank, name = parser.parse_or()
    except (IndexError, ValueError):
        return LicenseInfo(kind="by_exception_only", name=expression.strip(), raw=expression)
    if not parser.done():
        return LicenseInfo(kind="by_exception_only", name=expression.strip(), raw=expression)
    return LicenseInfo(kind=KIND_ORDER[rank], name=name, raw=expression)


def license_kind(identifier: str) -> str:
    """Bazel license kind of a single SPDX identifier."""
    cleaned = identifier.strip()
    if cleaned.endswith("+"):
        cleaned = cleaned[:-1]
    for suffix in ("-only", "-or-later"):
        if cleaned.endswith(suffix):
            cleaned = cleaned[: -len(suffix)]
    return _KINDS.get(cleaned, "by_exception_only")


class _ExpressionParser:
    def __init__(self, tokens: List[str]) -> None:
        self._tokens = tokens
        self._index = 0

    def done(self) -> bool:
        return self._index >= len(self._tokens)

    def _peek(self) -> Optional[str]:
        return None if self.done() else self._tokens[self._index]

    def _next(self) -> str:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def parse_or(self) -> Tuple[int, str]:
        best = self.parse_and()
        while self._peek() is not None and self._peek().upper() == "OR":
            self._next()
            candidate = self.parse_and()
            if candidate[0] < best[0]:
                best = candidate
        return best

    def parse_and(self) -> Tuple[int, str]:
        worst = self.parse_term()
        while self._peek() is not None and self._peek().upper() == "AND":
            self._next()
            candidate = self.parse_term()
            if candidate[0] > worst[0]:
                worst = candidate
        return worst

    def parse_term(self) -> Tuple[int, str]:
        token = self._next()
        if token == "(":
            result = self.parse_or()
            if self._next() != ")":
                raise ValueError("unbalanced parentheses")
            return result
        if token in {")", "OR", "AND", "WITH"}:
            raise ValueError(f"unexpected token {token}")
        if self._peek() is not None and self._peek().upper() == "WITH":
            self._next()
            self._next()
        return KIND_ORDER.index(license_kind(token)), token


__all__ = ["KIND_ORDER", "classify_license", "license_kind"]
