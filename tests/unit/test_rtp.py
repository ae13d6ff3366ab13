"""
test_rtp.py - Unit tests for return-to-player analysis
"""

import pytest
from decimal import Decimal

from slot_economy import InvalidInput, MachineAttributes, hit_frequency, simulate_rtp, theoretical_rtp
from slot_economy.catalog import MACHINE_TYPES


BASIC = MachineAttributes()


class TestTheoretical:
    """Tests for the exact figures."""

    def test_basic_machine(self):
        # (1/125) * (10 * 10 + 5 + 3 + 2 + 2)
        assert theoretical_rtp(BASIC) == Decimal("0.896")

    def test_hit_frequency(self):
        assert hit_frequency(BASIC) == Decimal("0.04")
        assert hit_frequency(MachineAttributes(reels=4)) == Decimal("0.008")

    def test_scales_with_payout_multiplier(self):
        jackpot = MACHINE_TYPES['jackpot'].attributes
        assert theoretical_rtp(jackpot) == Decimal("0.896") * Decimal("1.5")

    def test_jackpot_multiplier(self):
        assert theoretical_rtp(BASIC, jackpot_multiplier=1) == Decimal("0.176")


class TestSimulation:
    """Tests for simulate_rtp."""

    def test_converges_to_exact_value(self):
        estimate = simulate_rtp(BASIC, 10, 200_000, seed=42)
        exact = float(theoretical_rtp(BASIC))
        assert abs(estimate.rtp - exact) < 5 * estimate.std_error
        assert estimate.ci_low < estimate.rtp < estimate.ci_high
        assert abs(estimate.hit_rate - 0.04) < 0.003
        assert abs(estimate.jackpot_rate - 0.008) < 0.0015

    def test_seed_reproduces(self):
        a = simulate_rtp(BASIC, 10, 5_000, seed=7)
        b = simulate_rtp(BASIC, 10, 5_000, seed=7)
        assert a == b

    def test_wider_interval_at_higher_confidence(self):
        narrow = simulate_rtp(BASIC, 10, 5_000, seed=1, confidence=0.9)
        wide = simulate_rtp(BASIC, 10, 5_000, seed=1, confidence=0.99)
        assert wide.ci_high - wide.ci_low > narrow.ci_high - narrow.ci_low

    @pytest.mark.parametrize("kwargs", [
        {'spins': 1}, {'confidence': 1.0}, {'confidence': 0.0}, {'bet_amount': 0},
    ])
    def test_rejects(self, kwargs):
        args = {'bet_amount': 10, 'spins': 100}
        args.update(kwargs)
        with pytest.raises(InvalidInput):
            simulate_rtp(BASIC, **args)
