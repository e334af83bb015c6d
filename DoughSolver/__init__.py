"""Solver package for dough formulation: resolve ingredient masses from baker's constraints."""
from .config import load_config, save_config, SolverConfig, RatioBasis, RatioConventions
from .errors import (
    FormulationError,
    UnknownIngredient,
    MalformedTarget,
    MalformedProblem,
    RegistryError,
    ConfigError,
)
from .ingredients import (
    Ingredient,
    IngredientCategory,
    IngredientKind,
    IngredientRegistry,
    Composition,
    effective_composition,
    get_default_registry,
    hydration_to_water_ratio,
    water_ratio_to_hydration,
)
from .targets import (
    Free,
    FixedMass,
    FixedRatio,
    FixedMassAndRatio,
    GlobalConstraints,
    ProblemEntry,
    FormulationProblem,
)
from .builder import build_system, LinearSystem, ConstraintKind
from .linear_solver import solve_system, SolveStatus
from .result import FormulationResult, Diagnostic
from .formulation import solve, quick_formula, BreadAnchor
from .exchange import load_problem, parse_problem, dump_result, result_to_dict
from .solver_logging import LogLevel, SolverLogger, create_logger, create_string_logger

__all__ = [
    "load_config",
    "save_config",
    "SolverConfig",
    "RatioBasis",
    "RatioConventions",
    # Errors
    "FormulationError",
    "UnknownIngredient",
    "MalformedTarget",
    "MalformedProblem",
    "RegistryError",
    "ConfigError",
    # Registry
    "Ingredient",
    "IngredientCategory",
    "IngredientKind",
    "IngredientRegistry",
    "Composition",
    "effective_composition",
    "get_default_registry",
    "hydration_to_water_ratio",
    "water_ratio_to_hydration",
    # Targets
    "Free",
    "FixedMass",
    "FixedRatio",
    "FixedMassAndRatio",
    "GlobalConstraints",
    "ProblemEntry",
    "FormulationProblem",
    # Solving
    "build_system",
    "LinearSystem",
    "ConstraintKind",
    "solve_system",
    "SolveStatus",
    "FormulationResult",
    "Diagnostic",
    "solve",
    "quick_formula",
    "BreadAnchor",
    # Exchange
    "load_problem",
    "parse_problem",
    "dump_result",
    "result_to_dict",
    "LogLevel",
    "SolverLogger",
    "create_logger",
    "create_string_logger",
]
