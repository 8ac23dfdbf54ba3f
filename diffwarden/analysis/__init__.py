"""Diff analysis modules."""

from .diff_parser import DiffParser
from .rule_registry import Rule, RuleLoader, RuleRegistry
from .custom_rules import CustomRuleStore
from .pattern_matcher import PatternMatcher
from .aggregator import ViolationAggregator
from .fix_scorer import FixConfidenceScorer

__all__ = [
    "DiffParser",
    "Rule",
    "RuleLoader",
    "RuleRegistry",
    "CustomRuleStore",
    "PatternMatcher",
    "ViolationAggregator",
    "FixConfidenceScorer",
]
