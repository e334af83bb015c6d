"""High-level entry points: solve a formulation problem, or a quick four-ingredient bread."""
from __future__ import annotations

import time
from enum import Enum
from typing import Optional, Union

from .builder import build_system
from .config import SolverConfig
from .errors import FormulationError, MalformedProblem
from .feasibility import has_nonnegative_completion
from .ingredients import (
    Ingredient,
    IngredientCategory,
    IngredientKind,
    IngredientRegistry,
    get_default_registry,
)
from .linear_solver import SolveStatus, solve_system
from .result import FormulationResult, assemble_result
from .solver_logging import LogLevel, SolverLogger, create_logger
from .targets import (
    FixedMassAndRatio,
    FixedRatio,
    FormulationProblem,
    Free,
    GlobalConstraints,
    ProblemEntry,
)

QUICK_STARTER_ID = "starter"
DEFAULT_SALT_RATIO = 0.02


def _resolve_registry(registry: Optional[IngredientRegistry], config: SolverConfig) -> IngredientRegistry:
    if registry is not None:
        return registry
    if config.catalog_path is not None:
        return IngredientRegistry.from_file(config.catalog_path)
    return get_default_registry()


def solve(
    problem: FormulationProblem,
    registry: Optional[IngredientRegistry] = None,
    config: Optional[SolverConfig] = None,
    logger: Optional[SolverLogger] = None,
    log_level: Union[LogLevel, str, int, None] = None,
) -> FormulationResult:
    """
    Resolve the ingredient masses of ``problem``.

    Parameters
    ----------
    problem : FormulationProblem
        Ingredients with their targets, plus global constraints
    registry : IngredientRegistry, optional
        Catalog to resolve ids against. Defaults to ``config.catalog_path``
        or the packaged catalog.
    config : SolverConfig, optional
        Tolerance and conventions. Defaults to SolverConfig().
    logger : SolverLogger, optional
        Pre-configured logger. If None, one is created based on log_level.
    log_level : LogLevel | str | int, optional
        Logging verbosity; falls back to ``config.log_level``.
        - SILENT: No output
        - MINIMAL: Status, conflicts and errors
        - SUMMARY: Problem overview and classification
        - DETAILED: Composition, constraint and mass tables
        - DEBUG: Assembled matrix
        - TRACE: Elimination pivots

    Returns
    -------
    FormulationResult
        Masses and totals when the system is determined; otherwise a status
        and a diagnostic explaining why not

    Raises
    ------
    UnknownIngredient, MalformedTarget, MalformedProblem
        Structural problems, raised before anything is solved
    """
    start_time = time.perf_counter()
    config = config or SolverConfig()

    # Set up logging
    if logger is None:
        logger = create_logger(level=log_level if log_level is not None else config.log_level)

    registry = _resolve_registry(registry, config)

    logger.log_problem_start(problem)
    logger.log_config(config)

    try:
        system = build_system(problem, registry, config, logger)
    except FormulationError as exc:
        logger.log(LogLevel.MINIMAL, "ERROR", f"{type(exc).__name__}: {exc}")
        raise
    logger.log_system(system.row_names, system.unknown_ids, system.matrix, system.rhs)

    # ----- Solve -----
    solution = solve_system(system, config.tolerance, logger)

    completion: Optional[bool] = None
    if solution.status is SolveStatus.UNDERDETERMINED and config.check_nonnegative_completion:
        completion = has_nonnegative_completion(system.matrix, system.rhs, config.tolerance, logger)
        logger.log_completion_check(completion)

    result = assemble_result(problem, system, solution, config, completion)

    # ----- Report -----
    if result.diagnostic.null_space:
        logger.log_null_space(result.diagnostic.null_space)
    if result.diagnostic.negative_masses:
        logger.log_negative_masses(result.diagnostic.negative_masses)
    if solution.is_solved:
        logger.log_cross_check(result.diagnostic.cross_check_failures)
    logger.log_masses(result.masses, result.baker_percentages)
    logger.log_result_summary(result)

    solve_time_ms = (time.perf_counter() - start_time) * 1000
    logger.log(LogLevel.SUMMARY, "SOLVER", f"Solved in {solve_time_ms:.2f} ms")
    return result


# -----------------------------------------------------------------------------
# Quick bread formula
# -----------------------------------------------------------------------------

class BreadAnchor(str, Enum):
    """Which quantity a quick formula is scaled from."""
    TOTAL_MASS = "total_mass"
    FLOUR = "flour"  # total flour, starter flour included
    STARTER = "starter"


def _quick_starter(flour: Ingredient, hydration: float) -> Ingredient:
    return Ingredient(
        id=QUICK_STARTER_ID,
        name=f"Sourdough starter ({hydration:.0%})",
        category=IngredientCategory.LEAVENER,
        kind=IngredientKind.SOURDOUGH_STARTER,
        protein=flour.protein,
        ash=flour.ash,
        internal_hydration=hydration,
    )


def quick_formula(
    anchor: Union[BreadAnchor, str],
    amount: float,
    hydration: float,
    starter_hydration: float,
    starter_ratio: float,
    salt_ratio: float = DEFAULT_SALT_RATIO,
    flour_id: str = "white-flour-unbleached",
    water_id: str = "water",
    salt_id: str = "table-salt",
    registry: Optional[IngredientRegistry] = None,
    config: Optional[SolverConfig] = None,
    logger: Optional[SolverLogger] = None,
    log_level: Union[LogLevel, str, int, None] = None,
) -> FormulationResult:
    """
    Solve a flour / water / starter / salt bread scaled from one quantity.

    The starter is built on the fly from the flour's composition with the
    given internal hydration and is reported under the id ``"starter"``.
    Hydration and starter ratio are relative to total flour; the salt ratio
    follows ``config.ratio_basis``.

    Examples
    --------
    >>> r = quick_formula("starter", 100.0, 0.75, 0.5, 0.2)
    >>> round(r.total_flour, 2), round(r.mass_of("water"), 2)
    (500.0, 341.67)
    """
    try:
        anchor = BreadAnchor(anchor)
    except ValueError as exc:
        choices = ", ".join(a.value for a in BreadAnchor)
        raise MalformedProblem(f"Unknown anchor {anchor!r} (expected one of {choices})") from exc

    config = config or SolverConfig()
    base = _resolve_registry(registry, config)
    flour = base.get(flour_id)
    if starter_hydration < 0:
        raise MalformedProblem(f"Starter hydration must be >= 0, got {starter_hydration!r}")
    starter = _quick_starter(flour, starter_hydration)
    registry = IngredientRegistry([i for i in base if i.id != QUICK_STARTER_ID] + [starter])

    if anchor is BreadAnchor.STARTER:
        starter_target = FixedMassAndRatio(mass=amount, ratio=starter_ratio)
    else:
        starter_target = FixedRatio(ratio=starter_ratio)

    constraints = GlobalConstraints(
        total_mass=amount if anchor is BreadAnchor.TOTAL_MASS else None,
        total_flour=amount if anchor is BreadAnchor.FLOUR else None,
        hydration=hydration,
        salt_ratio=salt_ratio,
    )
    problem = FormulationProblem(
        entries=(
            ProblemEntry(flour_id, Free()),
            ProblemEntry(water_id, Free()),
            ProblemEntry(QUICK_STARTER_ID, starter_target),
            ProblemEntry(salt_id, Free()),
        ),
        constraints=constraints,
        name=f"quick formula ({anchor.value} {amount:g})",
    )
    return solve(problem, registry=registry, config=config, logger=logger, log_level=log_level)
