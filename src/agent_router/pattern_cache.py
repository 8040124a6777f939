"""
Pattern Cache

Process-wide memo of compiled glob/regex matchers keyed by (pattern, kind).

Thread Safety:
- Lookups of already-compiled patterns take no lock (plain dict read)
- The first compile of a pattern happens under a lock with a re-check,
  so concurrent first-compilers never compile the same pattern twice
- Entries are never evicted; pattern sets are bounded by configuration size
"""

import fnmatch
import logging
import re
import threading
from dataclasses import dataclass
from re import Pattern
from typing import Dict, Optional, Tuple

from agent_router.errors import PatternError

logger = logging.getLogger(__name__)

GLOB = "glob"
REGEX = "regex"
PATTERN_KINDS = (GLOB, REGEX)


@dataclass(frozen=True)
class CompiledMatcher:
    """A compiled pattern ready for matching."""

    pattern: str
    kind: str
    regex: Pattern

    def matches(self, text: str) -> bool:
        """
        Test text against the pattern.

        Globs must match the whole text (``*`` also crosses ``/``).
        Regexes match anywhere in the text.
        """
        if self.kind == GLOB:
            return self.regex.match(text) is not None
        return self.regex.search(text) is not None


class PatternCache:
    """
    Compile-once cache of glob and regex matchers.

    Examples:
        cache = PatternCache()
        matcher = cache.compile("*.ts", "glob")
        matcher.matches("src/auth.ts")  # True
        cache.compile("*.ts", "glob") is matcher  # True, no recompilation
    """

    def __init__(self):
        self._matchers: Dict[Tuple[str, str], CompiledMatcher] = {}
        self._lock = threading.Lock()
        self._compile_count = 0

    @property
    def compile_count(self) -> int:
        """Number of actual compilations performed (cache misses)."""
        return self._compile_count

    def __len__(self) -> int:
        return len(self._matchers)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._matchers

    def compile(self, pattern: str, kind: str, rule: Optional[str] = None) -> CompiledMatcher:
        """
        Return the compiled matcher for pattern, compiling it on first use.

        Args:
            pattern: Glob or regex source text
            kind: "glob" or "regex"
            rule: Description of the owning rule, used in error messages

        Returns:
            CompiledMatcher shared by every caller asking for the same pattern

        Raises:
            PatternError: If the pattern is empty or fails to compile
        """
        key = (pattern, kind)
        matcher = self._matchers.get(key)
        if matcher is not None:
            return matcher

        with self._lock:
            matcher = self._matchers.get(key)
            if matcher is None:
                matcher = self._compile(pattern, kind, rule)
                self._matchers[key] = matcher
                self._compile_count += 1
                logger.debug(f"Compiled {kind} pattern: {pattern!r}")
        return matcher

    def _compile(self, pattern: str, kind: str, rule: Optional[str]) -> CompiledMatcher:
        if kind not in PATTERN_KINDS:
            raise PatternError(pattern, kind, f"unknown pattern kind (expected one of {PATTERN_KINDS})", rule=rule)
        if not pattern:
            raise PatternError(pattern, kind, "pattern must not be empty", rule=rule)

        if kind == GLOB:
            problem = glob_syntax_error(pattern)
            if problem:
                raise PatternError(pattern, kind, problem, rule=rule)
            source = fnmatch.translate(pattern)
        else:
            source = pattern
        try:
            regex = re.compile(source)
        except re.error as e:
            raise PatternError(pattern, kind, str(e), rule=rule) from e
        return CompiledMatcher(pattern=pattern, kind=kind, regex=regex)


def glob_syntax_error(pattern: str) -> Optional[str]:
    """
    Describe the first syntax error in a glob, or return None if it is valid.

    fnmatch.translate() accepts anything, turning a broken character class
    into a literal that never matches. Classes must be closed, non-empty
    (``]`` right after ``[`` or ``[!`` is a literal member) and hold
    ascending ranges.

    Examples:
        glob_syntax_error("src/[ab]*.py")  # None
        glob_syntax_error("[invalid")  # "unclosed character class at position 0"
        glob_syntax_error("[z-a]")  # "invalid range 'z-a' in character class at position 0"
    """
    i = 0
    n = len(pattern)
    while i < n:
        if pattern[i] != "[":
            i += 1
            continue
        start = i
        j = i + 1
        if j < n and pattern[j] == "!":
            j += 1
        if j < n and pattern[j] == "]":
            j += 1
        end = pattern.find("]", j)
        if end == -1:
            return f"unclosed character class at position {start}"

        members = pattern[start + 1 : end]
        if members.startswith("!"):
            members = members[1:]
        k = 0
        while k < len(members):
            if k + 2 < len(members) and members[k + 1] == "-":
                low, high = members[k], members[k + 2]
                if low > high:
                    return f"invalid range '{low}-{high}' in character class at position {start}"
                k += 3
            else:
                k += 1
        i = end + 1
    return None
