"""Formulation results: resolved masses, recomputed totals and diagnostics."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from .builder import LinearSystem
from .config import RatioBasis, RatioConventions, SolverConfig
from .ingredients import Composition
from .linear_solver import SOLVED_STATUSES, ConstraintResidual, SolveStatus, SystemSolution
from .targets import FixedMassAndRatio, FormulationProblem, ratio_of


@dataclass(frozen=True)
class Diagnostic:
    """
    Human-readable account of how a solve ended.

    Attributes
    ----------
    message : str
        One-line summary
    conflicts : tuple[ConstraintResidual, ...]
        Constraints missed by the best fit, largest residual first
    negative_masses : Mapping[str, float]
        Ingredients the unique solution drives below zero
    rank, equations, unknowns : int
        Shape of the system that was solved
    null_space : tuple[Mapping[str, float], ...]
        Free-parameter directions, keyed by ingredient id
    nonnegative_completion : bool, optional
        Whether some all-non-negative assignment satisfies an
        under-determined system; None when not checked
    best_fit : Mapping[str, float]
        Least-squares masses of the unknowns, for inconsistent systems
    cross_check_failures : tuple[str, ...]
        Targets the final masses did not reproduce
    """
    message: str
    conflicts: Tuple[ConstraintResidual, ...] = ()
    negative_masses: Mapping[str, float] = field(default_factory=dict)
    rank: Optional[int] = None
    equations: int = 0
    unknowns: int = 0
    null_space: Tuple[Mapping[str, float], ...] = ()
    nonnegative_completion: Optional[bool] = None
    best_fit: Mapping[str, float] = field(default_factory=dict)
    cross_check_failures: Tuple[str, ...] = ()
    notes: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "rank": self.rank,
            "equations": self.equations,
            "unknowns": self.unknowns,
            "conflicts": [
                {"constraint": c.name, "kind": c.kind.value, "target": c.target, "residual": c.residual}
                for c in self.conflicts
            ],
            "negativeMasses": dict(self.negative_masses),
            "nullSpace": [dict(direction) for direction in self.null_space],
            "nonNegativeCompletion": self.nonnegative_completion,
            "bestFit": dict(self.best_fit),
            "crossCheckFailures": list(self.cross_check_failures),
            "notes": list(self.notes),
        }


@dataclass(frozen=True)
class Totals:
    """Dough totals recomputed from final masses, independent of the matrix."""
    mass: float
    flour: float
    water: float
    protein: float
    salt: float
    hydration: Optional[float]
    protein_ratio: Optional[float]
    salt_ratio: Optional[float]


def _ratio(numerator: float, denominator: float) -> Optional[float]:
    if denominator <= 0.0:
        return None
    return numerator / denominator


def compute_totals(
    masses: Mapping[str, float],
    compositions: Mapping[str, Composition],
    ratio_basis: Optional[RatioConventions] = None,
) -> Totals:
    """Sum per-gram contributions over ``masses``; ratios are None without a basis."""
    ratio_basis = ratio_basis or RatioConventions()
    total = math.fsum(masses.values())
    flour = math.fsum(compositions[i].flour * m for i, m in masses.items())
    water = math.fsum(compositions[i].water * m for i, m in masses.items())
    protein = math.fsum(compositions[i].protein * m for i, m in masses.items())
    salt = math.fsum(compositions[i].salt * m for i, m in masses.items())

    protein_basis = flour if ratio_basis.protein is RatioBasis.FLOUR else total
    salt_basis = flour if ratio_basis.salt is RatioBasis.FLOUR else total
    return Totals(
        mass=total,
        flour=flour,
        water=water,
        protein=protein,
        salt=salt,
        hydration=_ratio(water, flour),
        protein_ratio=_ratio(protein, protein_basis),
        salt_ratio=_ratio(salt, salt_basis),
    )


def cross_check(
    problem: FormulationProblem,
    masses: Mapping[str, float],
    totals: Totals,
    config: SolverConfig,
    atol: float,
) -> List[str]:
    """
    Compare every specified target against the recomputed totals.

    Ratio targets are compared in grams (``part`` against ``ratio * basis``)
    so a small flour total does not inflate the error.
    """
    failures: List[str] = []

    def check(label: str, actual: float, expected: float, slack: float = 0.0) -> None:
        if abs(actual - expected) > max(atol, slack):
            failures.append(f"{label}: expected {expected:.6g}, got {actual:.6g}")

    c = problem.constraints
    if c.total_mass is not None:
        check("total_mass", totals.mass, c.total_mass)
    if c.total_flour is not None:
        check("total_flour", totals.flour, c.total_flour)
    if c.hydration is not None:
        check("hydration (water g)", totals.water, c.hydration * totals.flour)
    if c.protein_ratio is not None:
        basis = totals.flour if config.ratio_basis.protein is RatioBasis.FLOUR else totals.mass
        check("protein_ratio (protein g)", totals.protein, c.protein_ratio * basis)
    if c.salt_ratio is not None:
        basis = totals.flour if config.ratio_basis.salt is RatioBasis.FLOUR else totals.mass
        check("salt_ratio (salt g)", totals.salt, c.salt_ratio * basis)

    for entry in problem.entries:
        ratio = ratio_of(entry.target)
        if ratio is None:
            continue
        mass, expected = masses[entry.ingredient_id], ratio * totals.flour
        slack = 0.0
        if isinstance(entry.target, FixedMassAndRatio):
            slack = config.mass_ratio_tolerance * max(1.0, abs(mass), abs(expected))
        check(f"ratio:{entry.ingredient_id} (g)", mass, expected, slack)
    return failures


@dataclass(frozen=True)
class FormulationResult:
    """
    Outcome of solving a FormulationProblem.

    ``masses`` keeps problem order. Masses of unknowns are None unless the
    system had a single solution (Unique, Overdetermined, or Infeasible);
    totals and ratios are only present alongside a full set of masses.
    """
    status: SolveStatus
    masses: Mapping[str, Optional[float]]
    diagnostic: Diagnostic
    totals: Optional[Totals] = None
    flour_contributions: Mapping[str, float] = field(default_factory=dict)
    name: Optional[str] = None

    @property
    def is_solved(self) -> bool:
        return self.status in SOLVED_STATUSES

    def mass_of(self, ingredient_id: str) -> Optional[float]:
        """Resolved mass of ``ingredient_id`` (None if left undetermined)."""
        if ingredient_id not in self.masses:
            raise KeyError(f"{ingredient_id!r} is not part of this formulation")
        return self.masses[ingredient_id]

    def _total(self, attr: str) -> Optional[float]:
        return getattr(self.totals, attr) if self.totals is not None else None

    @property
    def total_mass(self) -> Optional[float]:
        return self._total("mass")

    @property
    def total_flour(self) -> Optional[float]:
        return self._total("flour")

    @property
    def total_water(self) -> Optional[float]:
        return self._total("water")

    @property
    def total_protein(self) -> Optional[float]:
        return self._total("protein")

    @property
    def total_salt(self) -> Optional[float]:
        return self._total("salt")

    @property
    def hydration(self) -> Optional[float]:
        return self._total("hydration")

    @property
    def protein_ratio(self) -> Optional[float]:
        return self._total("protein_ratio")

    @property
    def salt_ratio(self) -> Optional[float]:
        return self._total("salt_ratio")

    @property
    def baker_percentages(self) -> Dict[str, float]:
        """Each ingredient's mass over total flour, as a fraction (1.0 = 100%)."""
        if not self.is_solved or not self.total_flour:
            return {}
        return {i: m / self.total_flour for i, m in self.masses.items() if m is not None}

    def to_dict(self) -> Dict[str, Any]:
        totals = None
        if self.totals is not None:
            totals = {
                "mass": self.totals.mass,
                "flour": self.totals.flour,
                "water": self.totals.water,
                "protein": self.totals.protein,
                "salt": self.totals.salt,
            }
        return {
            "name": self.name,
            "status": self.status.value,
            "masses": dict(self.masses),
            "totals": totals,
            "ratios": {
                "hydration": self.hydration,
                "proteinRatio": self.protein_ratio,
                "saltRatio": self.salt_ratio,
            },
            "bakerPercentages": self.baker_percentages,
            "diagnostic": self.diagnostic.to_dict(),
        }

    def to_dataframe(self) -> pd.DataFrame:
        """One row per ingredient: mass, flour contribution and baker's percentage."""
        percentages = self.baker_percentages
        rows = [
            {
                "ingredient": ingredient_id,
                "mass_g": mass,
                "flour_g": self.flour_contributions.get(ingredient_id),
                "bakers_pct": percentages.get(ingredient_id),
            }
            for ingredient_id, mass in self.masses.items()
        ]
        return pd.DataFrame(rows, columns=["ingredient", "mass_g", "flour_g", "bakers_pct"]).set_index("ingredient")


# -----------------------------------------------------------------------------
# Assembly
# -----------------------------------------------------------------------------

def _status_message(solution: SystemSolution, negative: Mapping[str, float]) -> str:
    status = solution.status
    if status is SolveStatus.UNIQUE:
        return "Unique solution"
    if status is SolveStatus.OVERDETERMINED:
        return (f"Overdetermined but consistent: {solution.equations - solution.unknowns} "
                f"redundant constraint(s)")
    if status is SolveStatus.UNDERDETERMINED:
        free = solution.unknowns - solution.rank
        return (f"{free} free parameter(s): rank {solution.rank} "
                f"for {solution.unknowns} unknown mass(es)")
    if status is SolveStatus.INFEASIBLE:
        listed = ", ".join(f"{i} ({m:.2f} g)" for i, m in negative.items())
        return f"Negative mass required: {listed}"
    if solution.conflicts:
        listed = ", ".join(f"{c.name} ({c.residual:+.4g})" for c in solution.conflicts)
        return f"Conflicting constraints: {listed}"
    return "Inconsistent system"


def assemble_result(
    problem: FormulationProblem,
    system: LinearSystem,
    solution: SystemSolution,
    config: Optional[SolverConfig] = None,
    nonnegative_completion: Optional[bool] = None,
) -> FormulationResult:
    """
    Build the FormulationResult of a solved system and cross-check it.

    A cross-check mismatch downgrades the status to Inconsistent.
    """
    config = config or SolverConfig()
    unknown_ids = system.unknown_ids

    masses: Dict[str, Optional[float]] = {}
    for ingredient_id in system.ingredient_ids:
        if ingredient_id in system.fixed_masses:
            masses[ingredient_id] = system.fixed_masses[ingredient_id]
        elif solution.values is not None:
            masses[ingredient_id] = float(solution.values[unknown_ids.index(ingredient_id)])
        else:
            masses[ingredient_id] = None

    negative = {unknown_ids[j]: float(solution.values[j]) for j in solution.negative} \
        if solution.values is not None else {}
    best_fit = {}
    if solution.best_fit is not None and solution.status is SolveStatus.INCONSISTENT:
        best_fit = {i: float(v) for i, v in zip(unknown_ids, solution.best_fit)}
    null_space = tuple(
        MappingProxyType({i: float(v) for i, v in zip(unknown_ids, direction)})
        for direction in solution.null_space
    )

    status = solution.status
    totals: Optional[Totals] = None
    flour_contributions: Dict[str, float] = {}
    failures: List[str] = []

    if solution.values is not None:
        resolved = {i: float(m) for i, m in masses.items() if m is not None}
        totals = compute_totals(resolved, system.compositions, config.ratio_basis)
        flour_contributions = {
            i: system.compositions[i].flour * m for i, m in resolved.items()
        }

        if status in SOLVED_STATUSES:
            atol = 10.0 * max(solution.residual_tolerance,
                              config.tolerance * max(1.0, totals.mass))
            failures = cross_check(problem, resolved, totals, config, atol)
            if failures:
                status = SolveStatus.INCONSISTENT
                best_fit = {i: resolved[i] for i in unknown_ids}
                masses = {i: (m if i in system.fixed_masses else None) for i, m in masses.items()}
                totals = None
                flour_contributions = {}

    message = _status_message(solution, negative)
    if failures:
        message = "Final masses do not reproduce: " + "; ".join(failures)

    diagnostic = Diagnostic(
        message=message,
        conflicts=tuple(solution.conflicts),
        negative_masses=MappingProxyType(negative),
        rank=solution.rank,
        equations=solution.equations,
        unknowns=solution.unknowns,
        null_space=null_space,
        nonnegative_completion=nonnegative_completion,
        best_fit=MappingProxyType(best_fit),
        cross_check_failures=tuple(failures),
        notes=tuple(solution.notes),
    )
    return FormulationResult(
        status=status,
        masses=MappingProxyType(masses),
        diagnostic=diagnostic,
        totals=totals,
        flour_contributions=MappingProxyType(flour_contributions),
        name=problem.name,
    )
