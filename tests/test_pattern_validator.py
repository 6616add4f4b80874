"""Tests for tidings.utils.pattern_validator."""

from tidings.types.rules import MatchMode
from tidings.utils.pattern_validator import (
    MAX_PATTERN_LENGTH,
    compile_pattern,
    validate_pattern,
)


# ---------------------------------------------------------------------------
# 1. Valid patterns
# ---------------------------------------------------------------------------

def test_valid_regex():
    """A pattern with groups, alternation, and quantifiers should pass."""
    ok, err = validate_pattern(r"(foo|bar)\d{1,3}", MatchMode.REGEX)
    assert ok is True
    assert err == ""


def test_substring_accepts_brackets():
    """Substring patterns are literal, so stray brackets are fine."""
    ok, _ = validate_pattern("[WARN", MatchMode.SUBSTRING)
    assert ok is True


def test_valid_glob():
    ok, _ = validate_pattern("chat-[ab]*", MatchMode.GLOB)
    assert ok is True


# ---------------------------------------------------------------------------
# 2. Rejected patterns
# ---------------------------------------------------------------------------

def test_empty_pattern_rejected():
    ok, err = validate_pattern("", MatchMode.EXACT)
    assert ok is False
    assert "empty" in err.lower()


def test_too_long_rejected():
    ok, err = validate_pattern("a" * (MAX_PATTERN_LENGTH + 1), MatchMode.SUBSTRING)
    assert ok is False
    assert str(MAX_PATTERN_LENGTH) in err


def test_unbalanced_glob_rejected():
    ok, err = validate_pattern("chat-[ab*", MatchMode.GLOB)
    assert ok is False
    assert "bracket" in err.lower()


def test_unbalanced_regex_rejected():
    ok, _ = validate_pattern("(abc", MatchMode.REGEX)
    assert ok is False


def test_nested_quantifier_rejected():
    ok, err = validate_pattern("a**", MatchMode.REGEX)
    assert ok is False
    assert "nested" in err.lower()


def test_escaped_brackets_are_balanced():
    ok, _ = validate_pattern(r"\[x\]", MatchMode.REGEX)
    assert ok is True


# ---------------------------------------------------------------------------
# 3. Compilation
# ---------------------------------------------------------------------------

def test_compile_glob_is_anchored_and_case_insensitive():
    compiled = compile_pattern("mail*", MatchMode.GLOB)
    assert compiled.match("Mailbox")
    assert not compiled.match("gmail")


def test_compile_literal_modes_return_none():
    assert compile_pattern("x", MatchMode.SUBSTRING) is None
    assert compile_pattern("x", MatchMode.EXACT) is None
