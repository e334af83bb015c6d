"""Translate a formulation problem into a linear system ``A x = b``.

Every row is first written over *all* ingredient masses of the problem, in
problem order. Fixed masses are then folded into the right-hand side and
the remaining columns are the unknowns, still in problem order.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import RatioBasis, SolverConfig
from .errors import MalformedProblem, MalformedTarget
from .ingredients import Composition, Ingredient, IngredientRegistry, effective_composition
from .solver_logging import LogLevel, SolverLogger, create_logger
from .targets import (
    FixedMass,
    FixedMassAndRatio,
    FixedRatio,
    FormulationProblem,
    Free,
    fixed_mass_of,
)


class ConstraintKind(str, Enum):
    TOTAL_MASS = "total_mass"
    TOTAL_FLOUR = "total_flour"
    HYDRATION = "hydration"
    PROTEIN_RATIO = "protein_ratio"
    SALT_RATIO = "salt_ratio"
    INGREDIENT_RATIO = "ingredient_ratio"


@dataclass(frozen=True)
class ConstraintRow:
    """One equation ``coefficients . masses = rhs`` over every problem ingredient."""
    name: str
    kind: ConstraintKind
    coefficients: Tuple[float, ...]
    rhs: float
    target: float
    description: str
    ingredient_id: Optional[str] = None

    def evaluate(self, masses: Sequence[float]) -> float:
        """Residual of this row for a full mass vector (problem order)."""
        return math.fsum(c * m for c, m in zip(self.coefficients, masses)) - self.rhs


@dataclass(frozen=True)
class LinearSystem:
    """
    Assembled system for the unknown ingredient masses.

    Attributes
    ----------
    rows : tuple[ConstraintRow, ...]
        Equations over all ingredient masses, before folding
    ingredient_ids : tuple[str, ...]
        All ingredients, problem order
    unknown_ids : tuple[str, ...]
        Ingredients whose mass is solved for; column order of ``matrix``
    fixed_masses : dict
        Known masses folded into ``rhs``
    compositions : dict
        Per-gram contributions used to write the rows
    matrix, rhs : numpy.ndarray
        ``A`` (rows x unknowns) and ``b`` after folding
    """
    rows: Tuple[ConstraintRow, ...]
    ingredient_ids: Tuple[str, ...]
    unknown_ids: Tuple[str, ...]
    fixed_masses: Dict[str, float]
    compositions: Dict[str, Composition]
    matrix: np.ndarray = field(repr=False, compare=False)
    rhs: np.ndarray = field(repr=False, compare=False)

    @property
    def row_names(self) -> List[str]:
        return [row.name for row in self.rows]

    @property
    def shape(self) -> Tuple[int, int]:
        return len(self.rows), len(self.unknown_ids)

    def full_vector(self, masses: Mapping[str, float]) -> List[float]:
        return [float(masses[i]) for i in self.ingredient_ids]

    def residuals(self, masses: Mapping[str, float]) -> Dict[str, float]:
        """Evaluate every row against a complete set of ingredient masses."""
        vector = self.full_vector(masses)
        return {row.name: row.evaluate(vector) for row in self.rows}


def _check_mass(ingredient_id: str, mass: float) -> None:
    if not math.isfinite(mass) or mass < 0:
        raise MalformedTarget(ingredient_id, f"mass must be finite and >= 0, got {mass!r}")


def _check_ratio(ingredient_id: str, ratio: float) -> None:
    if not math.isfinite(ratio) or ratio < 0:
        raise MalformedTarget(ingredient_id, f"ratio must be finite and >= 0, got {ratio!r}")


def _resolve_ingredients(
    problem: FormulationProblem,
    registry: IngredientRegistry,
) -> List[Ingredient]:
    if not problem.entries:
        raise MalformedProblem("A formulation problem needs at least one ingredient")

    seen = set()
    for entry in problem.entries:
        if entry.ingredient_id in seen:
            raise MalformedProblem(f"Ingredient listed twice: {entry.ingredient_id!r}")
        seen.add(entry.ingredient_id)

    # Every reference is resolved before any equation is written.
    return [registry.get(entry.ingredient_id) for entry in problem.entries]


def _validate_targets(problem: FormulationProblem) -> None:
    for entry in problem.entries:
        target = entry.target
        if isinstance(target, Free):
            continue
        if isinstance(target, FixedMass):
            _check_mass(entry.ingredient_id, target.mass)
        elif isinstance(target, FixedRatio):
            _check_ratio(entry.ingredient_id, target.ratio)
        elif isinstance(target, FixedMassAndRatio):
            _check_mass(entry.ingredient_id, target.mass)
            _check_ratio(entry.ingredient_id, target.ratio)
        else:
            raise MalformedTarget(entry.ingredient_id, f"unsupported target {target!r}")

    for name, value in problem.constraints.items():
        if not math.isfinite(value) or value < 0:
            raise MalformedProblem(f"Global constraint {name} must be finite and >= 0, got {value!r}")


def _uses_flour_basis(problem: FormulationProblem, config: SolverConfig) -> bool:
    constraints = problem.constraints
    if constraints.total_flour is not None or constraints.hydration is not None:
        return True
    if constraints.protein_ratio is not None and config.ratio_basis.protein is RatioBasis.FLOUR:
        return True
    if constraints.salt_ratio is not None and config.ratio_basis.salt is RatioBasis.FLOUR:
        return True
    return any(isinstance(e.target, (FixedRatio, FixedMassAndRatio)) for e in problem.entries)


def _known_total_flour(
    problem: FormulationProblem,
    flour: Sequence[float],
) -> Optional[float]:
    """Total flour when it is fixed before solving, else None."""
    if problem.constraints.total_flour is not None:
        return problem.constraints.total_flour
    total = 0.0
    for entry, fraction in zip(problem.entries, flour):
        if fraction == 0.0:
            continue
        mass = fixed_mass_of(entry.target)
        if mass is None:
            return None
        total += fraction * mass
    return total


def build_system(
    problem: FormulationProblem,
    registry: IngredientRegistry,
    config: Optional[SolverConfig] = None,
    logger: Optional[SolverLogger] = None,
) -> LinearSystem:
    """
    Build the constraint rows of ``problem`` and fold its fixed masses.

    Raises
    ------
    UnknownIngredient
        A referenced ingredient is missing from ``registry``
    MalformedTarget
        A target is negative, non-finite, or fixes both a mass and a ratio
        that disagree with a total flour already known before solving
    MalformedProblem
        No ingredients, duplicate ingredients, invalid global targets, or a
        flour-based ratio with nothing able to contribute flour
    """
    config = config or SolverConfig()
    if logger is None:
        logger = create_logger(level=LogLevel.SILENT)

    ingredients = _resolve_ingredients(problem, registry)
    _validate_targets(problem)

    ids = tuple(problem.ingredient_ids)
    compositions = {
        ing.id: effective_composition(ing, count_flour_moisture=config.count_flour_moisture)
        for ing in ingredients
    }
    flour = [compositions[i].flour for i in ids]
    water = [compositions[i].water for i in ids]
    protein = [compositions[i].protein for i in ids]
    salt = [compositions[i].salt for i in ids]
    ones = [1.0] * len(ids)

    if _uses_flour_basis(problem, config) and not any(f > 0.0 for f in flour):
        raise MalformedProblem(
            "A flour-based constraint is present but no ingredient contributes flour"
        )

    logger.log_ingredients([
        (entry.ingredient_id, compositions[entry.ingredient_id], entry.target.describe())
        for entry in problem.entries
    ])
    logger.log_constraints_start()

    rows: List[ConstraintRow] = []

    def add_row(name: str, kind: ConstraintKind, coefficients: Sequence[float],
                rhs: float, target: float, description: str,
                ingredient_id: Optional[str] = None) -> None:
        rows.append(ConstraintRow(
            name=name,
            kind=kind,
            coefficients=tuple(float(c) for c in coefficients),
            rhs=float(rhs),
            target=float(target),
            description=description,
            ingredient_id=ingredient_id,
        ))
        logger.log_constraint_added(name, description, rhs)

    def ratio_row(numerator: Sequence[float], ratio: float, basis: Sequence[float]) -> List[float]:
        return [n - ratio * d for n, d in zip(numerator, basis)]

    # ----- Per-ingredient ratio rows -----
    known_flour = _known_total_flour(problem, flour)

    for index, entry in enumerate(problem.entries):
        target = entry.target
        if not isinstance(target, (FixedRatio, FixedMassAndRatio)):
            continue

        if isinstance(target, FixedMassAndRatio) and known_flour is not None:
            expected = target.ratio * known_flour
            scale = max(1.0, abs(target.mass), abs(expected))
            if abs(target.mass - expected) > config.mass_ratio_tolerance * scale:
                raise MalformedTarget(
                    entry.ingredient_id,
                    f"{target.mass:g} g is not {target.ratio:.4%} of {known_flour:g} g flour "
                    f"(expected {expected:g} g)",
                )
            # Already satisfied; a row would only repeat known data.
            continue

        selector = [1.0 if i == index else 0.0 for i in range(len(ids))]
        add_row(
            f"ratio:{entry.ingredient_id}",
            ConstraintKind.INGREDIENT_RATIO,
            ratio_row(selector, target.ratio, flour),
            0.0,
            target.ratio,
            f"{entry.ingredient_id} = {target.ratio:g} x total flour",
            ingredient_id=entry.ingredient_id,
        )

    # ----- Global rows (fixed enumeration, fixed order) -----
    constraints = problem.constraints

    if constraints.total_mass is not None:
        add_row("total_mass", ConstraintKind.TOTAL_MASS, ones,
                constraints.total_mass, constraints.total_mass,
                f"sum(mass) = {constraints.total_mass:g} g")

    if constraints.total_flour is not None:
        add_row("total_flour", ConstraintKind.TOTAL_FLOUR, flour,
                constraints.total_flour, constraints.total_flour,
                f"sum(flour) = {constraints.total_flour:g} g")

    if constraints.hydration is not None:
        add_row("hydration", ConstraintKind.HYDRATION,
                ratio_row(water, constraints.hydration, flour),
                0.0, constraints.hydration,
                f"water - {constraints.hydration:g} x flour = 0")

    if constraints.protein_ratio is not None:
        basis_is_flour = config.ratio_basis.protein is RatioBasis.FLOUR
        add_row("protein_ratio", ConstraintKind.PROTEIN_RATIO,
                ratio_row(protein, constraints.protein_ratio, flour if basis_is_flour else ones),
                0.0, constraints.protein_ratio,
                f"protein - {constraints.protein_ratio:g} x {'flour' if basis_is_flour else 'dough'} = 0")

    if constraints.salt_ratio is not None:
        basis_is_flour = config.ratio_basis.salt is RatioBasis.FLOUR
        add_row("salt_ratio", ConstraintKind.SALT_RATIO,
                ratio_row(salt, constraints.salt_ratio, flour if basis_is_flour else ones),
                0.0, constraints.salt_ratio,
                f"salt - {constraints.salt_ratio:g} x {'flour' if basis_is_flour else 'dough'} = 0")

    # ----- Fold fixed masses into the right-hand side -----
    fixed_masses: Dict[str, float] = {}
    unknown_columns: List[int] = []
    for index, entry in enumerate(problem.entries):
        mass = fixed_mass_of(entry.target)
        if mass is None:
            unknown_columns.append(index)
        else:
            fixed_masses[entry.ingredient_id] = float(mass)

    matrix = np.zeros((len(rows), len(unknown_columns)), dtype=float)
    rhs = np.zeros(len(rows), dtype=float)
    for r, row in enumerate(rows):
        folded = row.rhs
        for index, ingredient_id in enumerate(ids):
            if ingredient_id in fixed_masses:
                folded -= row.coefficients[index] * fixed_masses[ingredient_id]
        rhs[r] = folded
        for c, index in enumerate(unknown_columns):
            matrix[r, c] = row.coefficients[index]

    return LinearSystem(
        rows=tuple(rows),
        ingredient_ids=ids,
        unknown_ids=tuple(ids[i] for i in unknown_columns),
        fixed_masses=fixed_masses,
        compositions=compositions,
        matrix=matrix,
        rhs=rhs,
    )
