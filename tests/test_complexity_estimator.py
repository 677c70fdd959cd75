"""
Unit Tests for Complexity Estimator

Tests cover:
1. Rule order and the estimate each rule produces
2. Item counting (digits, number words, quantifiers)
3. Decomposition threshold and iteration limits
"""

import pytest

from autopilot.complexity_estimator import (
    estimate_complexity,
    extract_item_count,
    iteration_limit,
    needs_decomposition,
    normalize_goal,
)
from autopilot.task_model import ComplexityEstimate, ComplexityTier, Confidence


# -----------------------------------------------------------------------------
# Rule Tests
# -----------------------------------------------------------------------------
class TestEstimateRules:
    """Each rule class resolves to its fixed estimate."""

    @pytest.mark.parametrize("goal", ["deploy", "check status", "Restart the server!", "list repos"])
    def test_short_goals_are_simple(self, goal):
        estimate = estimate_complexity(goal)
        assert estimate.tier == ComplexityTier.SIMPLE
        assert estimate.recommended == 5
        assert estimate.confidence == Confidence.HIGH
        assert needs_decomposition(estimate) is False

    def test_listing_goal(self):
        estimate = estimate_complexity("list my five most recent repositories")
        assert estimate.tier == ComplexityTier.SIMPLE
        assert estimate.recommended == 4
        assert (estimate.min_iterations, estimate.max_iterations) == (3, 6)
        assert estimate.reasoning == "List/display operation"

    def test_connector_inside_word_is_ignored(self):
        estimate = estimate_complexity("show the standard deviation of response times")
        assert estimate.reasoning == "List/display operation"

    def test_create_scales_with_item_count(self):
        estimate = estimate_complexity("create three landing pages for the product")
        assert estimate.tier == ComplexityTier.MODERATE
        assert estimate.recommended == 14
        assert estimate.confidence == Confidence.HIGH

    def test_create_budget_is_capped(self):
        estimate = estimate_complexity("create 12 landing pages for the product")
        assert estimate.recommended == 15

    def test_analysis_goal(self):
        estimate = estimate_complexity("analyze the performance of our checkout service")
        assert estimate.tier == ComplexityTier.MODERATE
        assert estimate.recommended == 12
        assert estimate.confidence == Confidence.MEDIUM

    def test_loop_goal_requires_decomposition(self):
        estimate = estimate_complexity("go through every customer invoice and send a reminder email")
        assert estimate.tier == ComplexityTier.VERY_COMPLEX
        assert estimate.recommended == 30
        assert estimate.requires_decomposition is True
        assert needs_decomposition(estimate) is True

    def test_multiple_connectors_are_complex(self):
        estimate = estimate_complexity("clone the repo and install dependencies and then run the build")
        assert estimate.tier == ComplexityTier.COMPLEX
        assert estimate.recommended == 18

    def test_task_type_hint(self):
        estimate = estimate_complexity("deploy the marketing site to production", task_type="deployment")
        assert estimate.tier == ComplexityTier.MODERATE
        assert estimate.recommended == 15
        assert estimate.reasoning == "Based on task type: deployment"
        assert needs_decomposition(estimate) is False

    def test_default_estimate(self):
        estimate = estimate_complexity("migrate the billing service to postgres")
        assert estimate.tier == ComplexityTier.MODERATE
        assert estimate.recommended == 8
        assert estimate.confidence == Confidence.LOW
        assert estimate.reasoning == "Moderate complexity task (default)"

    def test_estimate_is_deterministic(self):
        goal = "migrate the billing service to postgres"
        assert estimate_complexity(goal) == estimate_complexity(goal)

    def test_empty_goal_does_not_raise(self):
        assert estimate_complexity("").tier == ComplexityTier.SIMPLE


# -----------------------------------------------------------------------------
# Item Count Tests
# -----------------------------------------------------------------------------
class TestItemCount:
    """Explicit numbers win over quantifiers."""

    @pytest.mark.parametrize("goal,expected", [
        ("update 4 records", 4),
        ("update 50 records", 20),
        ("rename seven files", 7),
        ("rename every file", 10),
        ("rename a few files", 3),
        ("rename several files", 5),
        ("rename many files", 8),
        ("rename the file", 1),
    ])
    def test_extract_item_count(self, goal, expected):
        assert extract_item_count(goal) == expected

    def test_normalize_strips_trailing_punctuation(self):
        assert normalize_goal("  Deploy The App?!  ") == "deploy the app"


# -----------------------------------------------------------------------------
# Threshold Tests
# -----------------------------------------------------------------------------
class TestThresholds:
    """Decomposition threshold and iteration ceilings."""

    def _estimate(self, tier, recommended, confidence, max_iterations=30):
        return ComplexityEstimate(
            tier=tier,
            recommended=recommended,
            min_iterations=1,
            max_iterations=max_iterations,
            confidence=confidence,
            reasoning="test",
        )

    def test_large_uncertain_estimate_needs_decomposition(self):
        assert needs_decomposition(self._estimate(ComplexityTier.MODERATE, 16, Confidence.LOW)) is True

    def test_large_confident_estimate_runs_directly(self):
        assert needs_decomposition(self._estimate(ComplexityTier.MODERATE, 16, Confidence.HIGH)) is False

    def test_simple_never_needs_decomposition(self):
        assert needs_decomposition(self._estimate(ComplexityTier.SIMPLE, 40, Confidence.LOW)) is False

    def test_iteration_limit_by_tier(self):
        assert iteration_limit(self._estimate(ComplexityTier.SIMPLE, 4, Confidence.HIGH, max_iterations=6)) == 15
        assert iteration_limit(self._estimate(ComplexityTier.MODERATE, 8, Confidence.LOW, max_iterations=12)) == 20
        assert iteration_limit(self._estimate(ComplexityTier.VERY_COMPLEX, 30, Confidence.MEDIUM, max_iterations=30)) == 30

    def test_iteration_limit_never_below_max_iterations(self):
        assert iteration_limit(self._estimate(ComplexityTier.SIMPLE, 4, Confidence.HIGH, max_iterations=40)) == 40
