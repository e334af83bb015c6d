#!/usr/bin/env python
"""CLI entry point for the dough formulation solver."""
from __future__ import annotations

import argparse
import cProfile
import pstats
import sys
from io import StringIO
from pathlib import Path
from typing import Callable

from .config import load_config
from .errors import FormulationError
from .exchange import MassInput, dump_result, load_problem, write_result
from .formulation import BreadAnchor, quick_formula, solve
from .ingredients import IngredientRegistry, get_default_registry
from .result import FormulationResult


def _ratio_arg(text: str) -> float:
    """argparse type for ratios written as 0.75 or 75%."""
    try:
        if text.strip().endswith("%"):
            return float(text.strip()[:-1]) / 100.0
        return float(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected a ratio such as 0.75 or 75%, got {text!r}") from exc


def format_result(result: FormulationResult) -> str:
    """Format a result as a plain-text recipe card."""
    lines = [f"Status: {result.status.value}"]
    if result.name:
        lines.insert(0, f"Formula: {result.name}")

    percentages = result.baker_percentages
    lines.append("")
    lines.append("Ingredients:")
    for ingredient_id, mass in result.masses.items():
        if mass is None:
            lines.append(f"  {ingredient_id}: (undetermined)")
            continue
        pct = percentages.get(ingredient_id)
        pct_text = f"  ({pct:.1%})" if pct is not None else ""
        lines.append(f"  {ingredient_id}: {mass:.2f} g{pct_text}")

    if result.totals is not None:
        lines.append("")
        lines.append(f"Total dough: {result.total_mass:.2f} g")
        lines.append(f"Total flour: {result.total_flour:.2f} g")
        lines.append(f"Total water: {result.total_water:.2f} g")
        if result.hydration is not None:
            lines.append(f"Hydration: {result.hydration:.2%}")
        if result.protein_ratio is not None:
            lines.append(f"Protein: {result.protein_ratio:.2%}")
        if result.salt_ratio is not None:
            lines.append(f"Salt: {result.salt_ratio:.2%}")

    diagnostic = result.diagnostic
    if not result.is_solved:
        lines.append("")
        lines.append(diagnostic.message)
        for direction in diagnostic.null_space:
            terms = ", ".join(f"{k} {v:+.4f}" for k, v in direction.items() if v != 0.0)
            lines.append(f"  free direction: {terms}")
        if diagnostic.nonnegative_completion is not None:
            verdict = "exists" if diagnostic.nonnegative_completion else "does not exist"
            lines.append(f"  A non-negative completion {verdict}.")
    for note in diagnostic.notes:
        lines.append(f"Note: {note}")
    return "\n".join(lines)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Resolve dough ingredient masses from baker's constraints."
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=None,
        help="Path to solver config YAML (default: DoughSolver/DefaultSolverConfig.yaml)",
    )
    parser.add_argument(
        "--catalog",
        type=Path,
        default=None,
        help="Ingredient catalog JSON (default: packaged catalog)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["SILENT", "MINIMAL", "SUMMARY", "DETAILED", "DEBUG", "TRACE"],
        help="Logging verbosity (default: from config)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the result as JSON instead of a recipe card",
    )
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Profile the run with cProfile and print a report to stderr",
    )
    parser.add_argument(
        "--profile-lines",
        type=int,
        default=30,
        help="Rows of the profile report to show (default: 30)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    solve_cmd = sub.add_parser("solve", help="Solve a problem file (YAML or JSON)")
    solve_cmd.add_argument("problem", type=Path, help="Problem file")
    solve_cmd.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Also write the result here (.yaml or .json)",
    )

    quick_cmd = sub.add_parser("quick", help="Flour / water / starter / salt bread from one quantity")
    quick_cmd.add_argument(
        "--anchor",
        choices=[a.value for a in BreadAnchor],
        default=BreadAnchor.FLOUR.value,
        help="Quantity the formula is scaled from (default: flour)",
    )
    quick_cmd.add_argument("--amount", type=str, required=True, help="Anchor mass, e.g. '500 g'")
    quick_cmd.add_argument("--hydration", type=_ratio_arg, required=True)
    quick_cmd.add_argument("--starter-hydration", type=_ratio_arg, default=1.0)
    quick_cmd.add_argument("--starter-ratio", type=_ratio_arg, default=0.2)
    quick_cmd.add_argument("--salt-ratio", type=_ratio_arg, default=0.02)
    return parser


def _run(args: argparse.Namespace) -> FormulationResult:
    config = load_config(args.config)
    registry: IngredientRegistry = (
        IngredientRegistry.from_file(args.catalog) if args.catalog else
        IngredientRegistry.from_file(config.catalog_path) if config.catalog_path else
        get_default_registry()
    )

    if args.command == "solve":
        document = load_problem(args.problem, config.volume_density_g_per_ml)
        result = solve(
            document.problem,
            registry=document.registry(registry),
            config=config,
            log_level=args.log_level,
        )
        if args.output is not None:
            write_result(result, args.output)
        return result

    amount = MassInput.model_validate(args.amount).to_grams(config.volume_density_g_per_ml)
    return quick_formula(
        args.anchor,
        amount,
        hydration=args.hydration,
        starter_hydration=args.starter_hydration,
        starter_ratio=args.starter_ratio,
        salt_ratio=args.salt_ratio,
        registry=registry,
        config=config,
        log_level=args.log_level,
    )


def _profiled(fn: Callable[[], FormulationResult], lines: int) -> FormulationResult:
    """Run *fn* under cProfile and report the hottest calls on stderr."""
    profiler = cProfile.Profile()
    try:
        return profiler.runcall(fn)
    finally:
        report = StringIO()
        stats = pstats.Stats(profiler, stream=report).strip_dirs().sort_stats("cumulative")
        stats.print_stats(lines)
        rule = "-" * 60
        sys.stderr.write(
            f"{rule}\nprofile: {stats.total_calls} calls in {stats.total_tt:.3f} s\n"
            f"{rule}\n{report.getvalue()}\n"
        )


def main(argv: list[str] | None = None) -> int:
    """Exit status: 0 solved, 1 not solvable as posed, 2 invalid input."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        if args.profile:
            result = _profiled(lambda: _run(args), args.profile_lines)
        else:
            result = _run(args)
    except (FormulationError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    if args.json:
        print(dump_result(result, "json"))
    else:
        print(format_result(result))

    return 0 if result.is_solved else 1


if __name__ == "__main__":
    sys.exit(main())
