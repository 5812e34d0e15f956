"""
Path-based request classification.

The classifier is a pure function: given a method and a path it picks
one of the reserved local responses or the name of the upstream that
should serve the request.

Order matters: rules are evaluated top-to-bottom and the first match
wins. Markers are substring tests, so a path containing several markers
is always claimed by the earliest rule.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from ssl_proxy.upstreams.registry import (
    INTERNAL_ARTIFACTORY,
    PRODUCT,
    PUBLIC_ARTIFACTORY,
)

PREFLIGHT_METHOD = "OPTIONS"
HEALTH_PATHS = frozenset({"/", "/health"})


@dataclass(frozen=True)
class ShowPreflight:
    pass


@dataclass(frozen=True)
class ShowHealth:
    pass


@dataclass(frozen=True)
class RouteTo:
    upstream: str


Decision = Union[ShowPreflight, ShowHealth, RouteTo]


@dataclass(frozen=True)
class RoutingRule:
    """Send paths containing ``marker`` to ``upstream``."""

    marker: str
    upstream: str

    def matches(self, path: str) -> bool:
        return self.marker in path


@dataclass(frozen=True)
class RuleSet:
    rules: Tuple[RoutingRule, ...]
    default_upstream: str

    def targets(self) -> Tuple[str, ...]:
        """Every upstream name this rule set can route to."""
        names = [rule.upstream for rule in self.rules]
        names.append(self.default_upstream)
        return tuple(dict.fromkeys(names))


DEFAULT_RULES = RuleSet(
    rules=(
        RoutingRule(marker="/artifactory/", upstream=INTERNAL_ARTIFACTORY),
        RoutingRule(marker="blackduck/integration", upstream=PUBLIC_ARTIFACTORY),
    ),
    default_upstream=PRODUCT,
)


def first_match(path: str, rules: Sequence[RoutingRule]) -> Optional[RoutingRule]:
    for rule in rules:
        if rule.matches(path):
            return rule
    return None


def classify(method: str, path: str, rules: RuleSet = DEFAULT_RULES) -> Decision:
    if method == PREFLIGHT_METHOD:
        return ShowPreflight()
    if path in HEALTH_PATHS:
        return ShowHealth()
    rule = first_match(path, rules.rules)
    if rule is not None:
        return RouteTo(rule.upstream)
    return RouteTo(rules.default_upstream)
