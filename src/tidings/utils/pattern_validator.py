"""Rule pattern validation and compilation.

Patterns are validated once when the config is loaded so that rule
evaluation itself can never fail.
"""

import fnmatch
import re

from tidings.types.rules import MatchMode

# Safety limits
MAX_PATTERN_LENGTH = 200
_NESTED_QUANTIFIER_RE = re.compile(r"[+*?]\??[+*?]|(?:\{[^}]+\})[+*?]")


def validate_pattern(pattern: str, mode: MatchMode) -> tuple[bool, str]:
    """Validate a rule pattern for the given match mode.

    Returns (is_valid, error_message). If valid, error_message is empty.

    Checks:
    - Non-empty
    - Length <= MAX_PATTERN_LENGTH
    - Balanced brackets (glob and regex)
    - No nested quantifiers (regex, catastrophic backtracking risk)
    - Compilable
    """
    if not pattern:
        return False, "Pattern is empty"

    if len(pattern) > MAX_PATTERN_LENGTH:
        return False, f"Pattern exceeds {MAX_PATTERN_LENGTH} characters"

    if mode in (MatchMode.SUBSTRING, MatchMode.EXACT):
        return True, ""

    if mode is MatchMode.GLOB:
        # fnmatch treats a stray "[" as a literal; reject it so typos surface
        if not _brackets_balanced(pattern, parens=False):
            return False, "Unbalanced brackets in glob"
        try:
            re.compile(fnmatch.translate(pattern))
        except re.error as e:
            return False, f"Invalid glob: {e}"
        return True, ""

    if not _brackets_balanced(pattern, parens=True):
        return False, "Unbalanced brackets or parentheses"

    if _NESTED_QUANTIFIER_RE.search(pattern):
        return False, "Nested quantifiers detected (backtracking risk)"

    try:
        re.compile(pattern)
    except re.error as e:
        return False, f"Invalid regex: {e}"

    return True, ""


def compile_pattern(pattern: str, mode: MatchMode) -> re.Pattern | None:
    """Compile a validated pattern. Substring and exact modes need no regex."""
    if mode is MatchMode.GLOB:
        return re.compile(fnmatch.translate(pattern), re.IGNORECASE)
    if mode is MatchMode.REGEX:
        return re.compile(pattern, re.IGNORECASE)
    return None


def _brackets_balanced(pattern: str, parens: bool) -> bool:
    """Check that [] (and optionally ()) are balanced, respecting escapes."""
    stack = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\":
            i += 2  # skip escaped char
            continue
        if ch == "[" or (parens and ch == "("):
            stack.append(ch)
        elif parens and ch == ")":
            if not stack or stack[-1] != "(":
                return False
            stack.pop()
        elif ch == "]":
            if not stack or stack[-1] != "[":
                return False
            stack.pop()
        i += 1
    return len(stack) == 0
