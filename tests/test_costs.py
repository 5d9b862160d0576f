"""Tests for janus.costs."""
import math
import unittest

from janus.costs import estimate_cost, estimate_tokens, normalize_usage
from janus.models.catalog import ModelConfig


class TestEstimateTokens(unittest.TestCase):
    def test_empty_text_is_zero(self):
        self.assertEqual(estimate_tokens(""), 0)
        self.assertEqual(estimate_tokens(None), 0)

    def test_rounds_up_per_four_chars(self):
        self.assertEqual(estimate_tokens("abcd"), 1)
        self.assertEqual(estimate_tokens("abcde"), 2)
        self.assertEqual(estimate_tokens("x" * 400), 100)


class TestEstimateCost(unittest.TestCase):
    def setUp(self):
        self.model = ModelConfig("sonnet", "anthropic", "claude-sonnet", "balanced", 3.0, 15.0)

    def test_linear_in_tokens(self):
        cost = estimate_cost(self.model, 1_000_000, 1_000_000)
        self.assertAlmostEqual(cost, 18.0)
        self.assertAlmostEqual(estimate_cost(self.model, 1000, 0), 0.003)

    def test_invalid_counts_contribute_zero(self):
        self.assertEqual(estimate_cost(self.model, -5, None), 0.0)
        self.assertEqual(estimate_cost(self.model, float("nan"), "many"), 0.0)

    def test_invalid_prices_yield_zero(self):
        bad = ModelConfig("bad", "openai", "bad", "fast", float("inf"), 1.0)
        self.assertEqual(estimate_cost(bad, 1000, 1000), 0.0)

    def test_result_is_finite(self):
        self.assertTrue(math.isfinite(estimate_cost(self.model, 10**12, 10**12)))


class TestNormalizeUsage(unittest.TestCase):
    def test_floors_and_sums(self):
        self.assertEqual(
            normalize_usage(10.9, "3"),
            {"input_tokens": 10, "output_tokens": 3, "total_tokens": 13},
        )

    def test_garbage_becomes_zero(self):
        self.assertEqual(normalize_usage(None, -1)["total_tokens"], 0)


if __name__ == "__main__":
    unittest.main()
