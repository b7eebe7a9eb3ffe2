from __future__ import annotations

import re
from typing import Iterable

from token_resolver.schemas.token import IdentityCandidate

SYMBOL_MIN_LENGTH = 2
SYMBOL_MAX_LENGTH = 20
NAME_MAX_LENGTH = 100

PLACEHOLDERS = frozenset(
    {
        "",
        "unknown",
        "unknown token",
        "token",
        "pump",
        "n/a",
        "na",
        "tbd",
        "null",
        "undefined",
        "none",
        "nan",
        "?",
        "???",
        "-",
    }
)

_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")
_SHORTENED_RE = re.compile(r"^[A-Za-z0-9]{3,4}\.\.\.[A-Za-z0-9]{3,4}$")
_NUMERIC_RE = re.compile(r"^\d+(\.\d+)?$")
_HEX_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_BASE58_RE = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")
_ELLIPSIS_MAX_LENGTH = 12


def normalize(raw: str | None) -> str:
    if raw is None:
        return ""
    text = _CONTROL_RE.sub("", str(raw))
    return _WHITESPACE_RE.sub(" ", text).strip()


def looks_like_address(value: str) -> bool:
    return bool(_HEX_ADDRESS_RE.match(value) or _BASE58_RE.match(value))


def _is_shortened(value: str) -> bool:
    if _SHORTENED_RE.match(value):
        return True
    has_ellipsis = "..." in value or "…" in value
    return has_ellipsis and len(value) < _ELLIPSIS_MAX_LENGTH


def _passes_content_rules(value: str, exempt: str | None = None) -> bool:
    folded = value.casefold()
    if folded in PLACEHOLDERS and folded != exempt:
        return False
    if _is_shortened(value):
        return False
    if _NUMERIC_RE.match(value) or looks_like_address(value):
        return False
    return True


class TokenValidator:
    """Decides whether a provider's symbol/name pair is safe to cache.

    Stateless apart from the configured address-suffix conventions, so a
    single instance can be shared across concurrent resolutions.
    """

    def __init__(self, known_suffixes: Iterable[str] = ()) -> None:
        self._suffixes = tuple(s.casefold() for s in known_suffixes if s)

    def _suffix_for(self, address: str | None) -> str | None:
        if not address:
            return None
        folded = address.casefold()
        for suffix in self._suffixes:
            if folded.endswith(suffix):
                return suffix
        return None

    def normalize_symbol(self, raw: str | None, address: str | None = None) -> str:
        symbol = normalize(raw)
        suffix = self._suffix_for(address)
        if suffix is not None and symbol.casefold() == suffix:
            return suffix.upper()
        return symbol

    def normalize_candidate(
        self, candidate: IdentityCandidate, address: str | None = None
    ) -> IdentityCandidate:
        symbol = self.normalize_symbol(candidate.symbol, address)
        name = normalize(candidate.name) or symbol
        image_url = normalize(candidate.image_url) or None
        return IdentityCandidate(symbol=symbol, name=name, image_url=image_url)

    def accept_symbol(self, symbol: str | None, address: str | None = None) -> bool:
        value = normalize(symbol)
        if not SYMBOL_MIN_LENGTH <= len(value) <= SYMBOL_MAX_LENGTH:
            return False
        return _passes_content_rules(value, exempt=self._suffix_for(address))

    def accept_name(self, name: str | None, address: str | None = None) -> bool:
        value = normalize(name)
        if not value or len(value) > NAME_MAX_LENGTH:
            return False
        return _passes_content_rules(value, exempt=self._suffix_for(address))

    def accept(self, symbol: str | None, name: str | None, address: str | None = None) -> bool:
        return self.accept_symbol(symbol, address) and self.accept_name(name, address)

    def accept_candidate(self, candidate: IdentityCandidate, address: str | None = None) -> bool:
        return self.accept(candidate.symbol, candidate.name, address)

    def is_poisoned(self, symbol: str | None, name: str | None, address: str | None = None) -> bool:
        return not self.accept(symbol, name, address)
