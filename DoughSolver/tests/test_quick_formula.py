"""Tests for the four-ingredient quick bread formula."""
from __future__ import annotations

import pytest

from DoughSolver.errors import MalformedProblem, UnknownIngredient
from DoughSolver.formulation import QUICK_STARTER_ID, BreadAnchor, quick_formula
from DoughSolver.linear_solver import SolveStatus


FLOUR = "white-flour-unbleached"


class TestQuickFormula:

    def test_anchor_on_starter(self):
        result = quick_formula(BreadAnchor.STARTER, 100.0, hydration=0.75,
                               starter_hydration=0.5, starter_ratio=0.2)
        assert result.status is SolveStatus.UNIQUE
        assert result.total_flour == pytest.approx(500.0)
        assert result.mass_of(FLOUR) == pytest.approx(433.33, abs=0.01)
        assert result.mass_of("water") == pytest.approx(341.67, abs=0.01)
        assert result.mass_of("table-salt") == pytest.approx(10.0)
        assert result.mass_of(QUICK_STARTER_ID) == 100.0

    def test_anchor_on_total_mass(self):
        result = quick_formula("total_mass", 1000.0, hydration=0.75,
                               starter_hydration=0.5, starter_ratio=0.2)
        assert result.total_mass == pytest.approx(1000.0)
        assert result.total_flour == pytest.approx(564.97, abs=0.01)
        assert result.mass_of(QUICK_STARTER_ID) == pytest.approx(112.99, abs=0.01)

    def test_anchor_on_flour(self):
        result = quick_formula("flour", 400.0, hydration=0.75,
                               starter_hydration=0.5, starter_ratio=0.2)
        assert result.mass_of(QUICK_STARTER_ID) == pytest.approx(80.0)
        assert result.mass_of(FLOUR) == pytest.approx(346.67, abs=0.01)
        assert result.mass_of("water") == pytest.approx(273.33, abs=0.01)
        assert result.mass_of("table-salt") == pytest.approx(8.0)

    def test_custom_salt_ratio(self):
        result = quick_formula("flour", 1000.0, hydration=0.7, starter_hydration=1.0,
                               starter_ratio=0.1, salt_ratio=0.025)
        assert result.mass_of("table-salt") == pytest.approx(25.0)
        assert result.hydration == pytest.approx(0.7)

    def test_starter_ratio_zero_with_starter_anchor_is_inconsistent(self):
        result = quick_formula("starter", 100.0, hydration=0.7,
                               starter_hydration=1.0, starter_ratio=0.0)
        assert result.status is SolveStatus.INCONSISTENT

    def test_unknown_anchor(self):
        with pytest.raises(MalformedProblem, match="anchor"):
            quick_formula("loaf", 100.0, 0.7, 1.0, 0.2)

    def test_unknown_flour(self):
        with pytest.raises(UnknownIngredient):
            quick_formula("flour", 100.0, 0.7, 1.0, 0.2, flour_id="unicorn-flour")

    def test_negative_starter_hydration(self):
        with pytest.raises(MalformedProblem):
            quick_formula("flour", 100.0, 0.7, -1.0, 0.2)
