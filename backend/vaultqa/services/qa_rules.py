"""
Pluggable text heuristics for the QA engine

Each heuristic is a named rule with a human description and a predicate, so
rule sets can be tested one rule at a time and extended without touching the
evaluators:
- GENERIC_RATIONALE_RULES: templated / boilerplate rationale text
- PLACEHOLDER_RULES: generation artifacts (placeholders, leaked error strings)
- LAZY_TAB_RULES: chart tabs that carry no real clinical data
"""

import re
import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, List, Optional, Pattern

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextRule:
    """A named predicate over a piece of text."""
    name: str
    description: str
    predicate: Callable[[str], bool]

    def matches(self, text: str) -> bool:
        return bool(self.predicate(text or ""))


@dataclass(frozen=True)
class PatternRule(TextRule):
    """A regex-backed rule; its matches can be stripped out of text."""
    pattern: Optional[Pattern] = None

    @classmethod
    def compile(cls, name: str, description: str, regex: str, flags: int = 0) -> "PatternRule":
        pattern = re.compile(regex, flags)
        return cls(name=name, description=description, predicate=lambda text: bool(pattern.search(text)), pattern=pattern)

    def strip(self, text: str) -> str:
        if self.pattern is None:
            return text
        return self.pattern.sub("", text)


class RuleSet:
    """Ordered, extensible collection of rules."""

    def __init__(self, name: str, rules: Optional[List[TextRule]] = None):
        self.name = name
        self._rules: List[TextRule] = list(rules or [])

    def add(self, rule: TextRule) -> None:
        if any(r.name == rule.name for r in self._rules):
            raise ValueError(f"Rule '{rule.name}' already registered in {self.name}")
        self._rules.append(rule)

    def remove(self, name: str) -> None:
        self._rules = [r for r in self._rules if r.name != name]

    def get(self, name: str) -> Optional[TextRule]:
        return next((r for r in self._rules if r.name == name), None)

    def matching(self, text: str) -> List[TextRule]:
        return [r for r in self._rules if r.matches(text)]

    def strip(self, text: str, exclude: Iterable[str] = ()) -> str:
        """Remove every strippable match, then collapse leftover whitespace."""
        stripped = text
        for rule in self._rules:
            if isinstance(rule, PatternRule) and rule.name not in exclude:
                stripped = rule.strip(stripped)
        if stripped == text:
            return text
        return re.sub(r"[ \t]{2,}", " ", stripped).strip()

    def __iter__(self) -> Iterator[TextRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)


# =============================================================================
# GENERIC RATIONALE RULES
# =============================================================================

def _phrase_rule(name: str, phrase: str) -> PatternRule:
    return PatternRule.compile(
        name,
        f'Contains the stock phrase "{phrase}"',
        re.escape(phrase),
        re.IGNORECASE,
    )


_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def _has_repeated_sentence(text: str) -> bool:
    """True if any sentence of 6+ words appears more than once."""
    seen = set()
    for sentence in _SENTENCE_SPLIT.split(text):
        normalized = " ".join(sentence.lower().split()).rstrip(".!?")
        if len(normalized.split()) < 6:
            continue
        if normalized in seen:
            return True
        seen.add(normalized)
    return False


GENERIC_RATIONALE_RULES = RuleSet("generic_rationale", [
    _phrase_rule("template_focus_pathophysiology",
                 "Focus on the pathophysiology, assessment cues, and priority interventions"),
    _phrase_rule("template_completes_hypothesis",
                 "correctly completes the clinical hypothesis based on assessment cues"),
    _phrase_rule("template_excellence_guide", "NGN Clinical Excellence Guide 2026"),
    _phrase_rule("template_gathered_cues", "misinterpretation of the gathered cues"),
    _phrase_rule("template_delay_critical", "might delay more critical"),
    _phrase_rule("template_strictly_forbidden", "strictly forbidden"),
    TextRule(
        "repeated_sentence",
        "The same sentence is repeated within the rationale",
        _has_repeated_sentence,
    ),
])


# =============================================================================
# PLACEHOLDER / DEFECT RULES
# =============================================================================

PLACEHOLDER_RULES = RuleSet("placeholder", [
    PatternRule.compile("system_diagnostic_error", "Leaked generator error banner",
                        r"System Diagnostic Error"),
    PatternRule.compile("object_object", "Serialized object leaked into text",
                        r"\[object Object\]"),
    PatternRule.compile("undefined_token", "Literal 'undefined' from a missing value",
                        r"\bundefined\b"),
    PatternRule.compile("nan_token", "Literal 'NaN' from a failed number conversion",
                        r"\bNaN\b"),
    PatternRule.compile("todo_marker", "Unfinished TODO marker", r"\bTODO:"),
    PatternRule.compile("fixme_marker", "Unfinished FIXME marker", r"\bFIXME\b:?"),
    PatternRule.compile("placeholder_marker", "Literal PLACEHOLDER text", r"\bPLACEHOLDER\b"),
    PatternRule.compile("error_prefix", "Error message prefix in content", r"\bERROR:"),
    PatternRule.compile("lorem_ipsum", "Filler text", r"\blorem ipsum\b", re.IGNORECASE),
    PatternRule.compile("markdown_fence", "Markdown code fence from an unparsed response",
                        r"```(?:json)?"),
    PatternRule.compile("template_token", "Unreplaced {{template}} token",
                        r"\{\{\s*[A-Za-z_][\w.]*\s*\}\}"),
])

CONTROL_CHARACTERS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def strip_control_characters(text: str) -> str:
    return CONTROL_CHARACTERS.sub("", text)


# =============================================================================
# LAZY TAB RULES
# =============================================================================

MIN_TAB_CHARS = 100

LAZY_TAB_RULES = RuleSet("lazy_tab", [
    TextRule(
        "too_short",
        f"Tab content is under {MIN_TAB_CHARS} characters",
        lambda text: len(text.strip()) < MIN_TAB_CHARS,
    ),
    _phrase_rule("boilerplate_assessment", "Initial assessment confirms findings"),
    _phrase_rule("boilerplate_night_shift",
                 "Received report from night shift. Four patients require review"),
])
