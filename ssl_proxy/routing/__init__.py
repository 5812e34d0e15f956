from .classifier import (
    DEFAULT_RULES,
    Decision,
    RouteTo,
    RoutingRule,
    RuleSet,
    ShowHealth,
    ShowPreflight,
    classify,
)

__all__ = [
    "DEFAULT_RULES",
    "Decision",
    "RouteTo",
    "RoutingRule",
    "RuleSet",
    "ShowHealth",
    "ShowPreflight",
    "classify",
]
