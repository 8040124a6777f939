"""Tests for rule and config validation."""

import pytest

from agent_router.conditions import AllOf, AnyOf, FileGlob, FileRegex, Tag
from agent_router.errors import ConfigError, PatternError, RuleTooComplex
from agent_router.models import Agent, Rule, RoutingConfig, TagDefinition
from agent_router.validator import validate_config, validate_rule

AGENTS = (Agent("security-reviewer", "Security"), Agent("code-reviewer", "Review"))
TAGS = (TagDefinition("security", "Security work"),)


def make_config(*rules, agents=AGENTS, tags=TAGS) -> RoutingConfig:
    return RoutingConfig(agents=tuple(agents), rules=tuple(rules), tags=tuple(tags))


class TestValidateRule:
    """Tests for validate_rule."""

    def test_valid_rule_passes(self, pattern_cache):
        """A rule with known targets, declared tags and good patterns is accepted."""
        rule = Rule("Auth", AnyOf((FileGlob("src/auth*"), Tag("security"))), ("security-reviewer",))

        validate_rule(rule, {"security-reviewer"}, {"security"}, pattern_cache)

    def test_unknown_agent_names_rule_and_agent(self, pattern_cache):
        """The error message names both the rule and the missing agent."""
        rule = Rule("Auth", FileGlob("*.ts"), ("ghost",))

        with pytest.raises(ConfigError) as exc_info:
            validate_rule(rule, {"security-reviewer"}, set(), pattern_cache)

        assert str(exc_info.value) == "Rule 'Auth' routes to unknown agent 'ghost'"
        assert exc_info.value.rule == "Auth"

    def test_no_targets_rejected(self, pattern_cache):
        """Rules must route somewhere."""
        with pytest.raises(ConfigError, match="at least one agent"):
            validate_rule(Rule("Empty", FileGlob("*.ts"), ()), {"a"}, set(), pattern_cache)

    def test_undeclared_tag_rejected(self, pattern_cache):
        """Tags used by rules must be declared in llm-tags.json."""
        rule = Rule("Tagged", Tag("performance"), ("code-reviewer",))

        with pytest.raises(ConfigError, match="undeclared tag 'performance'"):
            validate_rule(rule, {"code-reviewer"}, {"security"}, pattern_cache)

    def test_leafless_tree_rejected(self, pattern_cache):
        """An all_of with no leaves would match every request."""
        rule = Rule("Always", AllOf((AnyOf(()),)), ("code-reviewer",))

        with pytest.raises(ConfigError, match="no conditions"):
            validate_rule(rule, {"code-reviewer"}, set(), pattern_cache)

    def test_bad_regex_raises_pattern_error(self, pattern_cache):
        """Patterns are compiled at validation time."""
        rule = Rule("Broken", FileRegex("[a-"), ("code-reviewer",))

        with pytest.raises(PatternError) as exc_info:
            validate_rule(rule, {"code-reviewer"}, set(), pattern_cache)

        assert exc_info.value.rule == "Broken"

    def test_malformed_glob_raises_pattern_error(self, pattern_cache):
        """An unclosed glob class is fatal at load, attributed to its rule."""
        rule = Rule("Bad glob", FileGlob("[invalid"), ("code-reviewer",))

        with pytest.raises(PatternError) as exc_info:
            validate_rule(rule, {"code-reviewer"}, set(), pattern_cache)

        assert exc_info.value.rule == "Bad glob"
        assert exc_info.value.pattern == "[invalid"

    def test_too_deep_rejected(self, pattern_cache):
        """Nesting depth is checked against the limit."""
        condition = FileGlob("*.py")
        for _ in range(4):
            condition = AllOf((condition,))
        rule = Rule("Deep", condition, ("code-reviewer",))

        with pytest.raises(RuleTooComplex):
            validate_rule(rule, {"code-reviewer"}, set(), pattern_cache, max_depth=2)

    def test_patterns_prewarm_cache(self, pattern_cache):
        """Validation leaves every pattern compiled in the shared cache."""
        rule = Rule("Auth", AnyOf((FileGlob("*.ts"), FileRegex("^src/"))), ("code-reviewer",))

        validate_rule(rule, {"code-reviewer"}, set(), pattern_cache)

        assert ("*.ts", "glob") in pattern_cache
        assert ("^src/", "regex") in pattern_cache


class TestValidateConfig:
    """Tests for validate_config."""

    def test_requires_an_agent(self, pattern_cache):
        """A config without agents cannot route anything."""
        with pytest.raises(ConfigError, match="at least one agent"):
            validate_config(make_config(agents=()), pattern_cache)

    def test_duplicate_agent_names_rejected(self, pattern_cache):
        """Agent names must be unique."""
        agents = (Agent("dup", "a"), Agent("dup", "b"))

        with pytest.raises(ConfigError, match="Duplicate agent name: dup"):
            validate_config(make_config(agents=agents), pattern_cache)

    def test_duplicate_tag_names_rejected(self, pattern_cache):
        """Tag names must be unique."""
        tags = (TagDefinition("security", "a"), TagDefinition("security", "b"))

        with pytest.raises(ConfigError, match="Duplicate tag name"):
            validate_config(make_config(tags=tags), pattern_cache)

    def test_empty_rules_allowed_with_warning(self, pattern_cache, caplog):
        """No rules is valid: every request goes to the backend."""
        config = make_config()

        assert validate_config(config, pattern_cache) is config
        assert "empty" in caplog.text

    def test_first_invalid_rule_reported(self, pattern_cache):
        """Rules are validated in order."""
        config = make_config(
            Rule("Good", FileGlob("*.ts"), ("code-reviewer",)),
            Rule("Bad", FileGlob("*.py"), ("nobody",)),
        )

        with pytest.raises(ConfigError) as exc_info:
            validate_config(config, pattern_cache)

        assert exc_info.value.rule == "Bad"
