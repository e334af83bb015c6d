"""End-to-end formulation scenarios.

These scenarios drive ``solve`` through every classification and check
the properties any result must hold:
1. Specified targets are reproduced by the final masses
2. Fixed masses come back unchanged
3. Results do not depend on ingredient order, and scale with the dough
4. Starters contribute M/(1+H) flour and M*H/(1+H) water
"""
from __future__ import annotations

from dataclasses import replace

import pytest

from DoughSolver import solve, LogLevel
from DoughSolver.builder import build_system
from DoughSolver.config import RatioBasis, RatioConventions, SolverConfig
from DoughSolver.errors import MalformedProblem
from DoughSolver.ingredients import get_default_registry
from DoughSolver.linear_solver import SolveStatus, solve_system
from DoughSolver.result import assemble_result
from DoughSolver.solver_logging import create_string_logger
from DoughSolver.targets import (
    FixedMass,
    FixedMassAndRatio,
    FixedRatio,
    FormulationProblem,
    Free,
    GlobalConstraints,
    ProblemEntry,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def registry():
    return get_default_registry()


@pytest.fixture
def country_loaf() -> FormulationProblem:
    """400 g flour and 80 g stiff starter; water and salt from the targets."""
    return FormulationProblem(
        entries=[
            ProblemEntry("white-flour-unbleached", FixedMass(400.0)),
            ProblemEntry("stiff-starter", FixedMass(80.0)),
            ProblemEntry("water", Free()),
            ProblemEntry("table-salt", Free()),
        ],
        constraints=GlobalConstraints(hydration=0.8, salt_ratio=0.02),
        name="Country loaf",
    )


def scaled(problem: FormulationProblem, k: float) -> FormulationProblem:
    entries = [
        ProblemEntry(e.ingredient_id, FixedMass(e.target.mass * k) if isinstance(e.target, FixedMass) else e.target)
        for e in problem.entries
    ]
    c = problem.constraints
    constraints = GlobalConstraints(
        total_mass=c.total_mass * k if c.total_mass is not None else None,
        total_flour=c.total_flour * k if c.total_flour is not None else None,
        hydration=c.hydration,
        protein_ratio=c.protein_ratio,
        salt_ratio=c.salt_ratio,
    )
    return FormulationProblem(entries=entries, constraints=constraints)


# ---------------------------------------------------------------------------
# Tests: Unique solutions
# ---------------------------------------------------------------------------

class TestUniqueSolution:

    def test_country_loaf(self, registry, country_loaf):
        result = solve(country_loaf, registry)
        assert result.status is SolveStatus.UNIQUE
        assert result.is_solved
        assert result.mass_of("water") == pytest.approx(336.0)
        assert result.mass_of("table-salt") == pytest.approx(9.0667, abs=1e-4)
        assert result.total_flour == pytest.approx(453.3333, abs=1e-4)
        assert result.hydration == pytest.approx(0.8)
        assert result.salt_ratio == pytest.approx(0.02)
        assert result.name == "Country loaf"

    def test_fixed_masses_preserved(self, registry, country_loaf):
        result = solve(country_loaf, registry)
        assert result.mass_of("white-flour-unbleached") == 400.0
        assert result.mass_of("stiff-starter") == 80.0

    def test_total_mass_is_sum_of_masses(self, registry, country_loaf):
        result = solve(country_loaf, registry)
        assert result.total_mass == pytest.approx(sum(result.masses.values()))

    def test_starter_decomposition(self, registry, country_loaf):
        result = solve(country_loaf, registry)
        assert result.flour_contributions["stiff-starter"] == pytest.approx(80.0 / 1.5)
        # 336 g added water plus the starter's 26.67 g
        assert result.total_water == pytest.approx(336.0 + 80.0 * 0.5 / 1.5)

    def test_round_trip_residuals_vanish(self, registry, country_loaf):
        result = solve(country_loaf, registry)
        system = build_system(country_loaf, registry)
        for residual in system.residuals(result.masses).values():
            assert residual == pytest.approx(0.0, abs=1e-6)

    def test_baker_percentages(self, registry, country_loaf):
        result = solve(country_loaf, registry)
        pct = result.baker_percentages
        assert pct["white-flour-unbleached"] == pytest.approx(400.0 / (1360.0 / 3.0))
        assert pct["table-salt"] == pytest.approx(0.02)

    def test_mass_of_unknown_id(self, registry, country_loaf):
        result = solve(country_loaf, registry)
        with pytest.raises(KeyError):
            result.mass_of("rye")

    def test_recorded_mass_and_ratio_solve(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", FixedMass(400.0)),
                ProblemEntry("stiff-starter", FixedMass(80.0)),
                ProblemEntry("water", Free()),
                ProblemEntry("table-salt", FixedMassAndRatio(9.07, 0.02)),
            ],
            constraints=GlobalConstraints(hydration=0.8),
        )
        result = solve(problem, registry)
        assert result.status is SolveStatus.UNIQUE
        assert result.mass_of("table-salt") == 9.07
        assert result.mass_of("water") == pytest.approx(336.0)

    def test_zero_hydration_gives_zero_water(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", FixedMass(500.0)),
                ProblemEntry("water", Free()),
            ],
            constraints=GlobalConstraints(hydration=0.0),
        )
        result = solve(problem, registry)
        assert result.status is SolveStatus.UNIQUE
        assert result.mass_of("water") == 0.0

    def test_counted_flour_moisture(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", FixedMass(1000.0)),
                ProblemEntry("water", Free()),
            ],
            constraints=GlobalConstraints(hydration=0.7),
        )
        result = solve(problem, registry, SolverConfig(count_flour_moisture=True))
        # 870 g dry flour needs 609 g water, 130 g of it already in the flour
        assert result.total_flour == pytest.approx(870.0)
        assert result.mass_of("water") == pytest.approx(479.0)

    def test_protein_target_with_gluten(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", Free()),
                ProblemEntry("gluten-powder", Free()),
                ProblemEntry("water", Free()),
            ],
            constraints=GlobalConstraints(total_flour=1000.0, protein_ratio=0.14, hydration=0.7),
        )
        result = solve(problem, registry)
        assert result.status is SolveStatus.UNIQUE
        assert result.protein_ratio == pytest.approx(0.14)
        # 0.117 f + 0.75 g = 140, f + g = 1000
        assert result.mass_of("gluten-powder") == pytest.approx(23.0 / 0.633)

    def test_ingredient_ratio_target(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", FixedMass(500.0)),
                ProblemEntry("olive-oil", FixedRatio(0.05)),
            ],
        )
        result = solve(problem, registry)
        assert result.mass_of("olive-oil") == pytest.approx(25.0)

    def test_salt_on_dough_basis(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", FixedMass(600.0)),
                ProblemEntry("water", FixedMass(390.0)),
                ProblemEntry("table-salt", Free()),
            ],
            constraints=GlobalConstraints(salt_ratio=0.01),
        )
        config = SolverConfig(ratio_basis=RatioConventions(salt=RatioBasis.DOUGH))
        result = solve(problem, registry, config)
        # salt = 0.01 * (990 + salt)
        assert result.mass_of("table-salt") == pytest.approx(9.9 / 0.99)
        assert result.salt_ratio == pytest.approx(0.01)


# ---------------------------------------------------------------------------
# Tests: Properties
# ---------------------------------------------------------------------------

class TestProperties:

    def test_idempotent(self, registry, country_loaf):
        assert solve(country_loaf, registry).to_dict() == solve(country_loaf, registry).to_dict()

    def test_order_invariant(self, registry, country_loaf):
        reversed_problem = FormulationProblem(
            entries=list(reversed(country_loaf.entries)),
            constraints=country_loaf.constraints,
        )
        forward = solve(country_loaf, registry)
        backward = solve(reversed_problem, registry)
        assert backward.status is forward.status
        for ingredient_id, mass in forward.masses.items():
            assert backward.mass_of(ingredient_id) == pytest.approx(mass)

    @pytest.mark.parametrize("k", [0.5, 2.0, 10.0])
    def test_scale_invariant(self, registry, country_loaf, k):
        base = solve(country_loaf, registry)
        bigger = solve(scaled(country_loaf, k), registry)
        assert bigger.status is base.status
        for ingredient_id, mass in base.masses.items():
            assert bigger.mass_of(ingredient_id) == pytest.approx(mass * k)
        assert bigger.hydration == pytest.approx(base.hydration)


# ---------------------------------------------------------------------------
# Tests: Under- and over-determined systems
# ---------------------------------------------------------------------------

class TestDeterminacy:

    def test_underdetermined_reports_free_direction(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", Free()),
                ProblemEntry("water", Free()),
            ],
            constraints=GlobalConstraints(hydration=0.7),
        )
        result = solve(problem, registry)
        assert result.status is SolveStatus.UNDERDETERMINED
        assert not result.is_solved
        assert result.mass_of("water") is None
        assert result.total_mass is None
        assert result.diagnostic.rank == 1
        (direction,) = result.diagnostic.null_space
        assert direction["water"] == pytest.approx(0.7 * direction["white-flour-unbleached"])
        assert result.diagnostic.nonnegative_completion is True

    def test_underdetermined_without_nonnegative_completion(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", FixedMass(100.0)),
                ProblemEntry("water", Free()),
                ProblemEntry("table-salt", Free()),
            ],
            constraints=GlobalConstraints(total_mass=50.0),
        )
        result = solve(problem, registry)
        assert result.status is SolveStatus.UNDERDETERMINED
        assert result.diagnostic.nonnegative_completion is False

    def test_completion_check_can_be_disabled(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", Free()),
                ProblemEntry("water", Free()),
            ],
            constraints=GlobalConstraints(hydration=0.7),
        )
        result = solve(problem, registry, SolverConfig(check_nonnegative_completion=False))
        assert result.diagnostic.nonnegative_completion is None

    def test_overdetermined_consistent(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", Free()),
                ProblemEntry("water", Free()),
            ],
            constraints=GlobalConstraints(total_mass=850.0, total_flour=500.0, hydration=0.7),
        )
        result = solve(problem, registry)
        assert result.status is SolveStatus.OVERDETERMINED
        assert result.is_solved
        assert result.mass_of("water") == pytest.approx(350.0)


# ---------------------------------------------------------------------------
# Tests: Failures
# ---------------------------------------------------------------------------

class TestFailures:

    def test_inconsistent_names_hydration(self, registry, country_loaf):
        entries = [
            ProblemEntry("water", FixedMass(100.0)) if e.ingredient_id == "water" else e
            for e in country_loaf.entries
        ]
        problem = FormulationProblem(entries=entries, constraints=country_loaf.constraints)
        result = solve(problem, registry)
        assert result.status is SolveStatus.INCONSISTENT
        assert not result.is_solved
        assert result.diagnostic.conflicts[0].name == "hydration"
        assert result.diagnostic.conflicts[0].target == pytest.approx(0.8)
        assert result.diagnostic.to_dict()["conflicts"][0]["target"] == pytest.approx(0.8)
        assert "hydration" in result.diagnostic.message
        assert result.mass_of("table-salt") is None
        assert result.mass_of("water") == 100.0

    def test_masses_that_miss_a_target_are_downgraded(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", FixedMass(500.0)),
                ProblemEntry("water", Free()),
            ],
            constraints=GlobalConstraints(hydration=0.7),
        )
        system = build_system(problem, registry)
        skewed = replace(system, matrix=system.matrix * 2.0)
        solution = solve_system(skewed)
        assert solution.status is SolveStatus.UNIQUE

        result = assemble_result(problem, skewed, solution)
        assert result.status is SolveStatus.INCONSISTENT
        assert not result.is_solved
        assert result.mass_of("water") is None
        assert result.mass_of("white-flour-unbleached") == 500.0
        assert result.totals is None
        assert any("hydration" in f for f in result.diagnostic.cross_check_failures)
        assert result.diagnostic.best_fit["water"] == pytest.approx(175.0)

    def test_inconsistent_overdetermined(self, registry):
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", Free()),
                ProblemEntry("water", Free()),
            ],
            constraints=GlobalConstraints(total_mass=900.0, total_flour=500.0, hydration=0.7),
        )
        result = solve(problem, registry)
        assert result.status is SolveStatus.INCONSISTENT
        assert result.diagnostic.conflicts
        assert set(result.diagnostic.best_fit) == {"white-flour-unbleached", "water"}

    def test_infeasible_negative_water(self, registry):
        # 100 g flour + 200 g liquid starter already hold more water than 40% hydration
        problem = FormulationProblem(
            entries=[
                ProblemEntry("white-flour-unbleached", FixedMass(100.0)),
                ProblemEntry("sourdough-starter", FixedMass(200.0)),
                ProblemEntry("water", Free()),
            ],
            constraints=GlobalConstraints(hydration=0.4),
        )
        result = solve(problem, registry)
        assert result.status is SolveStatus.INFEASIBLE
        assert not result.is_solved
        assert result.diagnostic.negative_masses["water"] == pytest.approx(-20.0)
        assert "water" in result.diagnostic.message
        assert result.baker_percentages == {}

    def test_structural_error_raised_and_logged(self, registry):
        logger, buffer = create_string_logger(LogLevel.MINIMAL)
        problem = FormulationProblem(
            entries=[ProblemEntry("water", Free()), ProblemEntry("table-salt", FixedRatio(0.02))],
        )
        with pytest.raises(MalformedProblem):
            solve(problem, registry, logger=logger)
        assert "MalformedProblem" in buffer.getvalue()


# ---------------------------------------------------------------------------
# Tests: Result export
# ---------------------------------------------------------------------------

class TestResultExport:

    def test_to_dict(self, registry, country_loaf):
        data = solve(country_loaf, registry).to_dict()
        assert data["status"] == "Unique"
        assert data["masses"]["water"] == pytest.approx(336.0)
        assert data["ratios"]["hydration"] == pytest.approx(0.8)
        assert data["diagnostic"]["rank"] == 2

    def test_to_dataframe(self, registry, country_loaf):
        frame = solve(country_loaf, registry).to_dataframe()
        assert list(frame.index) == ["white-flour-unbleached", "stiff-starter", "water", "table-salt"]
        assert frame.loc["water", "mass_g"] == pytest.approx(336.0)
        assert frame.loc["stiff-starter", "flour_g"] == pytest.approx(80.0 / 1.5)
        assert frame.loc["table-salt", "bakers_pct"] == pytest.approx(0.02)

    def test_logging_reports_masses(self, registry, country_loaf):
        logger, buffer = create_string_logger(LogLevel.DETAILED)
        solve(country_loaf, registry, logger=logger)
        text = buffer.getvalue()
        assert "Resolved Masses" in text
        assert "Status: Unique" in text
        assert "All specified targets reproduced" in text
