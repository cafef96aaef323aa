"""
Match filter for IOWatcher.

A watch filters changed file names with exactly one rule:

- RegexRule: a compiled regular expression searched against the leaf name.
- GlobRule: a single glob pattern using ``*`` and ``?`` wildcards.

Glob rules are handed to the native watchdog handler (see binding.py), so the
normalizer only applies regex rules itself. Alternated glob patterns such as
``*.txt|*.log`` are not supported; use a regex instead.
"""

import fnmatch
import os
import re
from dataclasses import dataclass
from typing import Optional, Pattern, Union

from iowatcher.exceptions import ConfigurationError

# Native patterns used when filtering happens after the fact.
MATCH_EVERYTHING = "*"


@dataclass(frozen=True)
class RegexRule:
    pattern: Pattern

    @property
    def source(self) -> str:
        return self.pattern.pattern


@dataclass(frozen=True)
class GlobRule:
    pattern: str

    @property
    def source(self) -> str:
        return self.pattern


MatchRule = Union[RegexRule, GlobRule]


def compile_regex(regex) -> Pattern:
    """Return a compiled pattern, compiling strings on the way."""
    if isinstance(regex, re.Pattern):
        return regex
    try:
        return re.compile(regex)
    except re.error as e:
        raise ConfigurationError(f"Invalid regex '{regex}': {e}")


def check_glob(glob: str) -> str:
    """
    Validate a single glob pattern.

    Raises:
        ConfigurationError: If the pattern is empty, alternated or contains a
            path separator.
    """
    if not glob:
        raise ConfigurationError("Glob pattern must not be empty.")
    if "|" in glob:
        raise ConfigurationError(
            f"Glob '{glob}' uses alternation, which is not supported. "
            "Use a regex rule instead."
        )
    if "/" in glob or (os.sep != "/" and os.sep in glob):
        raise ConfigurationError(
            f"Glob '{glob}' must match a file name, not a path."
        )
    return glob


def build_match_rule(regex=None, glob: Optional[str] = None) -> MatchRule:
    """
    Build the match rule for a watch.

    Exactly one of ``regex`` and ``glob`` must be given.
    """
    if regex is not None and glob is not None:
        raise ConfigurationError("Set either a regex or a glob, not both.")
    if regex is None and glob is None:
        raise ConfigurationError("One of regex or glob must be set.")
    if regex is not None:
        return RegexRule(compile_regex(regex))
    return GlobRule(check_glob(glob))


def native_patterns(rule: MatchRule):
    """Patterns handed to the native handler for this rule."""
    if isinstance(rule, GlobRule):
        return [rule.pattern]
    return [MATCH_EVERYTHING]


def matches(file_name: str, rule: MatchRule) -> bool:
    """
    Decide whether a changed file name satisfies the rule.

    Glob matching is case-insensitive, like watchdog's pattern handler.
    """
    if not file_name:
        return False
    if isinstance(rule, RegexRule):
        return rule.pattern.search(file_name) is not None
    return fnmatch.fnmatchcase(file_name.lower(), rule.pattern.lower())
