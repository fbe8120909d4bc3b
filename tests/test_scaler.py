"""
Tests for amount scaling policies
"""

import pytest

from swapmirror.errors import PolicyError
from swapmirror.scaler import CappedPolicy, FixedFractionPolicy, scale


class TestFixedFraction:
    """Tests for the default 10% policy."""

    def test_ten_percent(self):
        assert scale(100) == 10
        assert scale(100 * 10**18) == 10 * 10**18

    def test_exact_for_large_amounts(self):
        amount = 123_456_789_012_345_678_901_234_567
        assert scale(amount) == amount // 10

    def test_rounds_down(self):
        assert scale(19) == 1

    def test_never_exceeds_original(self):
        for amount in (10, 11, 999, 10**30 + 7):
            assert 0 < scale(amount) <= amount

    def test_non_decreasing(self):
        results = [scale(a) for a in range(10, 500)]
        assert results == sorted(results)

    def test_strictly_increasing_across_one_step_of_denominator(self):
        for amount in range(10, 200):
            assert scale(amount + 10) > scale(amount)

    def test_custom_fraction(self):
        assert scale(1000, FixedFractionPolicy(2500)) == 250
        assert scale(1000, FixedFractionPolicy(10_000)) == 1000

    @pytest.mark.parametrize("bps", [0, -1, 10_001, 1.5, True])
    def test_invalid_fraction(self, bps):
        with pytest.raises(PolicyError):
            FixedFractionPolicy(bps)


class TestScaleErrors:
    """Amounts that cannot be replicated."""

    def test_result_rounds_to_zero(self):
        with pytest.raises(PolicyError):
            scale(5)

    def test_zero_and_negative(self):
        with pytest.raises(PolicyError):
            scale(0)
        with pytest.raises(PolicyError):
            scale(-100)

    @pytest.mark.parametrize("amount", [100.0, "100", None, True])
    def test_non_integer_amount(self, amount):
        with pytest.raises(PolicyError):
            scale(amount)


class TestCappedPolicy:
    """Tests for CappedPolicy."""

    def test_caps_large_trades(self):
        policy = CappedPolicy(FixedFractionPolicy(1000), cap=50)
        assert scale(100, policy) == 10
        assert scale(10_000, policy) == 50

    def test_cap_must_be_positive(self):
        with pytest.raises(PolicyError):
            CappedPolicy(FixedFractionPolicy(), cap=0)
