# incidentwatch/classify.py
from __future__ import annotations

import re
from typing import Callable, List, NamedTuple, Optional, Tuple

import config
from incidentwatch.schema import Classification


class Rule(NamedTuple):
    name: str
    predicate: Callable[[str], bool]
    category: str
    severity: int


def _matches(pattern: str) -> Callable[[str], bool]:
    rx = re.compile(pattern)
    return lambda text: rx.search(text) is not None


# Evaluated top to bottom over lower-cased text; first match wins.
# Worst case first: a message mentioning both "armed" and "attack" is terrorism/5.
RULES: List[Rule] = [
    Rule("violence", _matches(r"attack|killed|bomb|explo|terror|casualties"), "terrorism", 5),
    Rule("escalation", _matches(r"threat|warning|escalat|mobiliz|armed"), "political_violence", 4),
    Rule("unrest", _matches(r"protest|demonstrat|unrest|riot"), "civil_unrest", 3),
    Rule("disinformation", _matches(r"disinformation|propaganda|fake.*news|narrative"), "disinformation", 2),
]

DEFAULT_CATEGORY = "social_media"
DEFAULT_SEVERITY = 3


def match_rule(text: str, rules: Optional[List[Rule]] = None) -> Optional[Rule]:
    t = (text or "").lower()
    for rule in (RULES if rules is None else rules):
        if rule.predicate(t):
            return rule
    return None


def classify(text: str, rules: Optional[List[Rule]] = None) -> Classification:
    """
    Keyword classification of free text.
    Pure: the same text always yields the same category/severity/confidence.
    Confidence is fixed for automated classification; only analyst review raises it.
    """
    rule = match_rule(text, rules)
    if rule is None:
        return Classification(
            category=DEFAULT_CATEGORY,
            severity=DEFAULT_SEVERITY,
            confidence=config.AUTO_CONFIDENCE,
        )
    return Classification(
        category=rule.category,
        severity=rule.severity,
        confidence=config.AUTO_CONFIDENCE,
    )


def rule_hits(text: str) -> List[Tuple[str, str]]:
    """Every rule that fires (name, category), in priority order. For review tooling."""
    t = (text or "").lower()
    return [(r.name, r.category) for r in RULES if r.predicate(t)]
