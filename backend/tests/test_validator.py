import pytest

from fakes import ADDRESS_X, PUMP_ADDRESS
from token_resolver.schemas.token import IdentityCandidate
from token_resolver.validation.validator import TokenValidator, normalize


validator = TokenValidator(["pump", "bonk"])


def test_accepts_ordinary_ticker() -> None:
    assert validator.accept("DOGE", "Dogecoin") is True
    assert validator.accept("WIF", "dogwifhat", ADDRESS_X) is True


@pytest.mark.parametrize(
    "symbol",
    ["Unknown", "UNKNOWN", "token", "pump", "N/A", "tbd", "null", "undefined", "", "   "],
)
def test_rejects_placeholder_symbols(symbol: str) -> None:
    assert validator.accept(symbol, "Some Name") is False


@pytest.mark.parametrize("symbol", ["7GCi...W2hr", "abc...xyz", "AB…CD", "x...y"])
def test_rejects_shortened_addresses(symbol: str) -> None:
    assert validator.accept(symbol, "Some Name") is False


@pytest.mark.parametrize(
    "symbol",
    ["12345", "3.14", "A", "ABCDEFGHIJKLMNOPQRSTU"],
)
def test_rejects_numeric_and_out_of_range_lengths(symbol: str) -> None:
    assert validator.accept(symbol, "Some Name") is False


def test_rejects_names_that_look_like_addresses() -> None:
    assert validator.accept("DOGE", ADDRESS_X) is False
    assert validator.accept("DOGE", "0x" + "ab" * 20) is False
    assert validator.accept("DOGE", "Unknown") is False


def test_empty_name_falls_back_to_symbol() -> None:
    normalized = validator.normalize_candidate(IdentityCandidate(symbol=" BONKED ", name=None))
    assert normalized.symbol == "BONKED"
    assert normalized.name == "BONKED"


def test_suffix_symbol_is_normalized_for_matching_address() -> None:
    normalized = validator.normalize_candidate(IdentityCandidate(symbol="pump", name="pump"), PUMP_ADDRESS)

    assert normalized.symbol == "PUMP"
    assert validator.accept_candidate(normalized, PUMP_ADDRESS) is True


def test_suffix_symbol_is_rejected_for_other_addresses() -> None:
    normalized = validator.normalize_candidate(IdentityCandidate(symbol="pump", name="pump"), ADDRESS_X)

    assert normalized.symbol == "pump"
    assert validator.accept_candidate(normalized, ADDRESS_X) is False


@pytest.mark.parametrize(
    "raw",
    [None, "", "  DOGE  ", "DO\x00GE", "Dog  \t wif\nhat", "…", "$WIF", "\x7fpump", "a" * 50],
)
def test_normalize_is_idempotent(raw) -> None:
    once = normalize(raw)
    assert normalize(once) == once


def test_normalize_symbol_is_idempotent_with_suffix() -> None:
    once = validator.normalize_symbol(" Pump ", PUMP_ADDRESS)
    assert validator.normalize_symbol(once, PUMP_ADDRESS) == once == "PUMP"


def test_is_poisoned_mirrors_accept() -> None:
    assert validator.is_poisoned("7GCi...W2hr", ADDRESS_X, ADDRESS_X) is True
    assert validator.is_poisoned("DOGE", "Dogecoin", ADDRESS_X) is False
