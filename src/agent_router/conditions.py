"""
Condition Evaluator

Boolean condition trees over the facts of a routing request.

Condition kinds form a closed set:

    Leaves:       FileGlob, FileRegex, BranchRegex, PromptRegex, Tag
    Combinators:  AllOf (empty => True), AnyOf (empty => False)

Evaluation is a pure function of (condition, MatchContext). The only shared
state touched is the PatternCache, which is populated on first use of a
pattern. Nesting depth is bounded by an explicit limit so pathological
configurations fail with RuleTooComplex instead of exhausting the stack.

Wire format (rules.json):
    {"file_pattern": "*.ts"}            # alias: file_glob
    {"file_regex": "^src/.*\\.py$"}
    {"branch_regex": "^release/"}
    {"prompt_regex": "(?i)security"}
    {"llm_tag": "security-concern"}     # alias: tag
    {"all_of": [<condition>, ...]}
    {"any_of": [<condition>, ...]}
"""

import logging
from dataclasses import dataclass, field
from typing import ClassVar, FrozenSet, Iterator, List, Optional, Sequence, Tuple, Union

from agent_router.errors import ConfigError, RuleTooComplex
from agent_router.pattern_cache import GLOB, REGEX, PatternCache

logger = logging.getLogger(__name__)

# Nesting limit for condition trees (combinator levels below the root)
DEFAULT_MAX_DEPTH = 32


# =============================================================================
# CONDITION TYPES
# =============================================================================


@dataclass(frozen=True)
class FileGlob:
    """True iff any request file matches the glob."""

    pattern: str
    kind: ClassVar[str] = "file_glob"


@dataclass(frozen=True)
class FileRegex:
    """True iff any request file matches the regex."""

    pattern: str
    kind: ClassVar[str] = "file_regex"


@dataclass(frozen=True)
class BranchRegex:
    """True iff a branch is known and matches the regex."""

    pattern: str
    kind: ClassVar[str] = "branch_regex"


@dataclass(frozen=True)
class PromptRegex:
    """True iff the task, intent, or original prompt matches the regex."""

    pattern: str
    kind: ClassVar[str] = "prompt_regex"


@dataclass(frozen=True)
class Tag:
    """True iff the semantic tag is in the context's tag set."""

    name: str
    kind: ClassVar[str] = "tag"


@dataclass(frozen=True)
class AllOf:
    """True iff every child is true."""

    children: Tuple["Condition", ...] = ()
    kind: ClassVar[str] = "all_of"


@dataclass(frozen=True)
class AnyOf:
    """True iff at least one child is true."""

    children: Tuple["Condition", ...] = ()
    kind: ClassVar[str] = "any_of"


Leaf = Union[FileGlob, FileRegex, BranchRegex, PromptRegex, Tag]
Condition = Union[FileGlob, FileRegex, BranchRegex, PromptRegex, Tag, AllOf, AnyOf]

LEAF_TYPES = (FileGlob, FileRegex, BranchRegex, PromptRegex, Tag)
PATTERN_LEAF_KINDS = {
    FileGlob: GLOB,
    FileRegex: REGEX,
    BranchRegex: REGEX,
    PromptRegex: REGEX,
}

# Wire keys accepted in rules.json, including the legacy names
LEAF_KEYS = {
    "file_pattern": FileGlob,
    "file_glob": FileGlob,
    "file_regex": FileRegex,
    "branch_regex": BranchRegex,
    "prompt_regex": PromptRegex,
    "llm_tag": Tag,
    "tag": Tag,
}
COMBINATOR_KEYS = {"all_of": AllOf, "any_of": AnyOf}


def leaf_value(leaf: Leaf) -> str:
    """Return the pattern text or tag name of a leaf."""
    if isinstance(leaf, Tag):
        return leaf.name
    return leaf.pattern


def parse_condition(
    data: object,
    rule: Optional[str] = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
    _depth: int = 0,
) -> Condition:
    """
    Build a Condition tree from its JSON form.

    Args:
        data: Decoded JSON object for the condition
        rule: Owning rule description, used in error messages
        max_depth: Maximum combinator nesting depth

    Returns:
        Parsed Condition

    Raises:
        ConfigError: If the object is not a recognized condition
        RuleTooComplex: If nesting exceeds max_depth
    """
    if _depth > max_depth:
        raise RuleTooComplex(max_depth, rule=rule)

    if not isinstance(data, dict) or len(data) != 1:
        raise ConfigError(
            f"Condition must be an object with exactly one key, got: {data!r}", rule=rule
        )

    (key, value), = data.items()

    if key in COMBINATOR_KEYS:
        if not isinstance(value, list):
            raise ConfigError(f"'{key}' must be a list of conditions", rule=rule)
        children = tuple(
            parse_condition(child, rule=rule, max_depth=max_depth, _depth=_depth + 1)
            for child in value
        )
        return COMBINATOR_KEYS[key](children)

    if key in LEAF_KEYS:
        if not isinstance(value, str):
            raise ConfigError(f"'{key}' must be a string, got: {value!r}", rule=rule)
        return LEAF_KEYS[key](value)

    raise ConfigError(f"Unknown condition type: '{key}'", rule=rule)


def iter_leaves(condition: Condition) -> Iterator[Leaf]:
    """Yield every leaf of a condition tree, left to right (no recursion)."""
    stack: List[Condition] = [condition]
    while stack:
        node = stack.pop()
        if isinstance(node, (AllOf, AnyOf)):
            stack.extend(reversed(node.children))
        else:
            yield node


def condition_depth(condition: Condition) -> int:
    """Return the combinator nesting depth of a condition tree (leaf => 0)."""
    deepest = 0
    stack: List[Tuple[Condition, int]] = [(condition, 0)]
    while stack:
        node, depth = stack.pop()
        deepest = max(deepest, depth)
        if isinstance(node, (AllOf, AnyOf)):
            stack.extend((child, depth + 1) for child in node.children)
    return deepest


# =============================================================================
# MATCH CONTEXT AND TRACE
# =============================================================================


@dataclass(frozen=True)
class MatchContext:
    """Facts a condition is evaluated against."""

    files: Tuple[str, ...] = ()
    branch: Optional[str] = None
    tags: FrozenSet[str] = frozenset()
    prompts: Tuple[str, ...] = ()

    def with_tags(self, tags: Sequence[str]) -> "MatchContext":
        """Return a copy of this context with tags added to the tag set."""
        return MatchContext(
            files=self.files,
            branch=self.branch,
            tags=self.tags | frozenset(tags),
            prompts=self.prompts,
        )


@dataclass
class MatchTrace:
    """
    Attribution for a successful match.

    leaves: (kind, value) of every satisfied leaf that contributed, in order
    files: Files that satisfied a file leaf, in request order. When no file
           leaf contributed, all request files.
    """

    leaves: List[Tuple[str, str]] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    _matched_files: List[str] = field(default_factory=list, repr=False)

    def record(self, leaf: Leaf, matched_files: Sequence[str] = ()) -> None:
        self.leaves.append((leaf.kind, leaf_value(leaf)))
        self._matched_files.extend(matched_files)

    def checkpoint(self) -> Tuple[int, int]:
        return len(self.leaves), len(self._matched_files)

    def rollback(self, mark: Tuple[int, int]) -> None:
        del self.leaves[mark[0]:]
        del self._matched_files[mark[1]:]

    def finalize(self, context: MatchContext) -> "MatchTrace":
        matched = set(self._matched_files)
        if matched:
            self.files = [f for f in context.files if f in matched]
        else:
            self.files = list(context.files)
        return self

    def primary(self, prefer_kind: Optional[str] = None) -> Optional[Tuple[str, str]]:
        """Return the leaf to report as the trigger, preferring prefer_kind."""
        if prefer_kind is not None:
            for leaf in self.leaves:
                if leaf[0] == prefer_kind:
                    return leaf
        return self.leaves[0] if self.leaves else None


# =============================================================================
# EVALUATOR
# =============================================================================


class ConditionEvaluator:
    """
    Evaluates condition trees against a MatchContext.

    The evaluator holds a reference to the shared PatternCache and the depth
    limit; it keeps no per-request state, so one instance serves concurrent
    requests.
    """

    def __init__(self, pattern_cache: PatternCache, max_depth: int = DEFAULT_MAX_DEPTH):
        self.pattern_cache = pattern_cache
        self.max_depth = max_depth

    def evaluate(self, condition: Condition, context: MatchContext, rule: Optional[str] = None) -> bool:
        """
        Evaluate a condition.

        Raises:
            RuleTooComplex: If nesting exceeds the depth limit
            PatternError: If a pattern in the tree fails to compile
        """
        return self._evaluate(condition, context, 0, None, rule)

    def match(self, condition: Condition, context: MatchContext, rule: Optional[str] = None) -> Optional[MatchTrace]:
        """Evaluate a condition and return its attribution trace, or None if false."""
        trace = MatchTrace()
        if self._evaluate(condition, context, 0, trace, rule):
            return trace.finalize(context)
        return None

    def _evaluate(
        self,
        condition: Condition,
        context: MatchContext,
        depth: int,
        trace: Optional[MatchTrace],
        rule: Optional[str],
    ) -> bool:
        if depth > self.max_depth:
            raise RuleTooComplex(self.max_depth, rule=rule)

        if isinstance(condition, (FileGlob, FileRegex)):
            matcher = self.pattern_cache.compile(condition.pattern, PATTERN_LEAF_KINDS[type(condition)], rule)
            matched = [f for f in context.files if matcher.matches(f)]
            if matched and trace is not None:
                trace.record(condition, matched)
            return bool(matched)

        if isinstance(condition, BranchRegex):
            if context.branch is None:
                return False
            matcher = self.pattern_cache.compile(condition.pattern, REGEX, rule)
            result = matcher.matches(context.branch)
            if result and trace is not None:
                trace.record(condition)
            return result

        if isinstance(condition, PromptRegex):
            matcher = self.pattern_cache.compile(condition.pattern, REGEX, rule)
            result = any(matcher.matches(text) for text in context.prompts)
            if result and trace is not None:
                trace.record(condition)
            return result

        if isinstance(condition, Tag):
            result = condition.name in context.tags
            if result and trace is not None:
                trace.record(condition)
            return result

        if isinstance(condition, AllOf):
            mark = trace.checkpoint() if trace is not None else None
            for child in condition.children:
                if not self._evaluate(child, context, depth + 1, trace, rule):
                    if trace is not None:
                        trace.rollback(mark)
                    return False
            return True

        if isinstance(condition, AnyOf):
            for child in condition.children:
                if self._evaluate(child, context, depth + 1, trace, rule):
                    return True
            return False

        raise ConfigError(f"Unknown condition type: {type(condition).__name__}", rule=rule)
