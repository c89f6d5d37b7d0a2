"""
Tests for fractional Kelly sizing.
Run with: pytest tests/test_kelly.py -v
"""

import pytest

from backend.core.kelly import (
    MAX_KELLY_FRACTION,
    kelly_fraction,
    kelly_to_units,
    units_to_dollars,
)


class TestKellyFraction:
    """Fraction of Kelly, capped, never negative"""

    def test_half_kelly_is_capped(self):
        # full Kelly = 0.2, half = 0.1, cap 0.05
        assert kelly_fraction(0.60, 2.0) == pytest.approx(MAX_KELLY_FRACTION)

    def test_small_multiplier_below_cap(self):
        assert kelly_fraction(0.60, 2.0, multiplier=0.10) == pytest.approx(0.02)

    def test_negative_ev_is_zero(self):
        assert kelly_fraction(0.45, 1.909) == 0.0

    def test_zero_multiplier(self):
        assert kelly_fraction(0.70, 2.0, multiplier=0.0) == 0.0

    def test_custom_cap(self):
        assert kelly_fraction(0.60, 2.0, max_fraction=0.2) == pytest.approx(0.1)

    def test_full_kelly_refused(self):
        with pytest.raises(ValueError):
            kelly_fraction(0.60, 2.0, multiplier=1.0)

    @pytest.mark.parametrize("p", [0.0, 1.0, 1.5])
    def test_bad_probability(self, p):
        with pytest.raises(ValueError):
            kelly_fraction(p, 2.0)

    def test_bad_decimal_odds(self):
        with pytest.raises(ValueError):
            kelly_fraction(0.6, 1.0)

    def test_bounded_across_grid(self):
        for p in (0.05, 0.3, 0.5, 0.7, 0.95):
            for d in (1.2, 1.9, 2.5, 6.0):
                f = kelly_fraction(p, d)
                assert 0.0 <= f <= MAX_KELLY_FRACTION


class TestUnits:

    def test_fraction_to_units(self):
        assert kelly_to_units(0.025) == pytest.approx(2.5)

    def test_units_to_dollars(self):
        assert units_to_dollars(2.5, 1000.0) == pytest.approx(25.0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
