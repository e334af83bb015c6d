"""
Structured logging for the formulation solver.

Provides insight into solver behavior at multiple verbosity levels:
    - MINIMAL: Only final status and errors
    - SUMMARY: Problem overview and totals
    - DETAILED: Ingredient compositions, constraint rows, resolved masses
    - DEBUG: Assembled matrix and classification internals
    - TRACE: Every elimination pivot

Usage:
    from DoughSolver.solver_logging import SolverLogger, LogLevel

    logger = SolverLogger(level=LogLevel.DETAILED)
    result = solve(problem, logger=logger)
"""
from __future__ import annotations

import sys
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from io import StringIO
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, TextIO, Tuple, Union


class LogLevel(IntEnum):
    """Verbosity levels for solver logging."""
    SILENT = 0      # No output at all
    MINIMAL = 10    # Only final status and errors
    SUMMARY = 20    # Problem overview and totals
    DETAILED = 30   # Compositions, constraint rows, masses
    DEBUG = 40      # Matrix and classification internals
    TRACE = 50      # Every elimination pivot


@dataclass(frozen=True)
class LogEntry:
    """One recorded event."""
    timestamp: datetime
    level: LogLevel
    category: str
    message: str
    data: Optional[Dict[str, Any]] = None

    def render(self, stamped: bool = True, levelled: bool = True) -> str:
        prefix = ""
        if stamped:
            prefix += self.timestamp.strftime("[%H:%M:%S.") + f"{self.timestamp.microsecond // 1000:03d}] "
        if levelled:
            prefix += f"<{self.level.name}> "
        return f"{prefix}{self.category}: {self.message}"


def _fmt_optional(value: Optional[float], fmt: str) -> str:
    return "-" if value is None else format(value, fmt)


def _render_table(headers: Sequence[str], rows: Sequence[Sequence[Any]],
                  title: Optional[str] = None) -> List[str]:
    cells = [[str(h) for h in headers]] + [[str(v) for v in row] for row in rows]
    widths = [max(len(row[col]) for row in cells) for col in range(len(headers))]

    def line(row: Sequence[str]) -> str:
        return "  ".join(text.rjust(width) if col else text.ljust(width)
                         for col, (text, width) in enumerate(zip(row, widths))).rstrip()

    rendered = [title] if title else []
    rendered.append(line(cells[0]))
    rendered.append("  ".join("~" * width for width in widths))
    rendered.extend(line(row) for row in cells[1:])
    return rendered


@dataclass
class SolverLogger:
    """
    Levelled event log for a formulation run.

    Every accepted entry is kept in ``entries`` and echoed to ``output``
    (stdout unless given) and, when ``log_to_file`` is set, to that file.
    Entries whose level is above ``level`` are discarded.
    """
    level: LogLevel = LogLevel.SUMMARY
    output: Optional[TextIO] = None
    log_to_file: Optional[Path] = None
    include_timestamp: bool = True
    include_level: bool = True
    entries: List[LogEntry] = field(default_factory=list)
    _log_file: Optional[TextIO] = field(default=None, repr=False)

    def __post_init__(self):
        self.output = self.output or sys.stdout
        if self.log_to_file is not None:
            self._log_file = Path(self.log_to_file).open("w", encoding="utf-8")

    def __enter__(self) -> "SolverLogger":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        log_file, self._log_file = self._log_file, None
        if log_file is not None:
            log_file.close()

    def enabled(self, level: LogLevel) -> bool:
        return LogLevel.SILENT < level <= self.level

    def log(self, level: LogLevel, category: str, message: str,
            data: Optional[Dict[str, Any]] = None) -> None:
        """Keep *message* and write it to every open sink if *level* is enabled."""
        if not self.enabled(level):
            return
        entry = LogEntry(datetime.now(), level, category, message, data)
        self.entries.append(entry)
        text = entry.render(self.include_timestamp, self.include_level) + "\n"
        for sink in (self.output, self._log_file):
            if sink is not None:
                sink.write(text)
                sink.flush()

    def _table(self, level: LogLevel, category: str,
               headers: Sequence[str], rows: Sequence[Sequence[Any]],
               title: Optional[str] = None) -> None:
        if self.enabled(level):
            for text in _render_table(headers, rows, title):
                self.log(level, category, text)

    # -------------------------------------------------------------------------
    # Problem Logging
    # -------------------------------------------------------------------------

    def log_problem_start(self, problem: Any) -> None:
        """Log the start of a solve with a problem summary."""
        label = f" '{problem.name}'" if problem.name else ""
        self.log(LogLevel.MINIMAL, "SOLVER",
                 f"Solving problem{label} with {len(problem.entries)} ingredients")

        if self.level >= LogLevel.SUMMARY:
            present = problem.constraints.items()
            if present:
                summary = ", ".join(f"{name}={value:g}" for name, value in present)
            else:
                summary = "none"
            self.log(LogLevel.SUMMARY, "PROBLEM", f"Global constraints: {summary}")

    def log_config(self, config: Any) -> None:
        """Log the conventions the solve runs under."""
        self.log(LogLevel.SUMMARY, "CONFIG",
                 f"Tolerance: {config.tolerance:g}, "
                 f"protein basis: {config.ratio_basis.protein.value}, "
                 f"salt basis: {config.ratio_basis.salt.value}, "
                 f"flour moisture counted: {config.count_flour_moisture}")

    def log_ingredients(self, rows: Sequence[Tuple[str, Any, str]]) -> None:
        """Log per-gram compositions as a table of (id, Composition, target)."""
        if self.level < LogLevel.DETAILED:
            return

        table = [
            [ingredient_id, f"{comp.flour:.4f}", f"{comp.water:.4f}",
             f"{comp.protein:.4f}", f"{comp.salt:.4f}", target]
            for ingredient_id, comp, target in rows
        ]
        self._table(LogLevel.DETAILED, "INGREDIENTS",
                    ["Ingredient", "Flour/g", "Water/g", "Protein/g", "Salt/g", "Target"],
                    table, title="Ingredient Compositions")

    # -------------------------------------------------------------------------
    # Constraint Logging
    # -------------------------------------------------------------------------

    def log_constraints_start(self) -> None:
        self.log(LogLevel.DETAILED, "CONSTRAINTS", "Building constraint rows...")

    def log_constraint_added(self, name: str, description: str, rhs_value: float) -> None:
        """Log a constraint row being added to the system."""
        self.log(LogLevel.DETAILED, "CONSTRAINTS",
                 f"Added: {name} - {description} (RHS={rhs_value:g})")

    def log_system(self, row_names: Sequence[str], unknown_ids: Sequence[str],
                   matrix: Any, rhs: Any) -> None:
        """Log the assembled matrix with its right-hand side."""
        self.log(LogLevel.SUMMARY, "SYSTEM",
                 f"System: {len(row_names)} equations, {len(unknown_ids)} unknowns")
        if self.level < LogLevel.DEBUG or not row_names:
            return

        rows = [
            [name] + [f"{matrix[i][j]:+.4f}" for j in range(len(unknown_ids))] + [f"{rhs[i]:+.4f}"]
            for i, name in enumerate(row_names)
        ]
        self._table(LogLevel.DEBUG, "SYSTEM",
                    ["Row"] + list(unknown_ids) + ["RHS"],
                    rows, title="Assembled System")

    # -------------------------------------------------------------------------
    # Elimination Logging
    # -------------------------------------------------------------------------

    def log_pivot(self, step: int, column: int, source_row: int, value: float) -> None:
        """Log an elimination pivot (TRACE level)."""
        if self.level < LogLevel.TRACE:
            return
        self.log(LogLevel.TRACE, "ELIMINATION",
                 f"Step {step}: pivot column {column} from row {source_row} (value={value:+.6g})")

    def log_classification(self, status: str, equations: int, unknowns: int, rank: int) -> None:
        self.log(LogLevel.SUMMARY, "SOLVER",
                 f"Classified as {status} (equations={equations}, unknowns={unknowns}, rank={rank})")

    def log_conflicts(self, conflicts: Sequence[Any]) -> None:
        """Log constraints ranked by best-fit residual."""
        if not conflicts:
            return
        worst = conflicts[0]
        self.log(LogLevel.MINIMAL, "CONFLICT",
                 f"Largest residual: {worst.name} ({worst.residual:+.6g})")

        if self.level >= LogLevel.DETAILED:
            rows = [[c.name, c.kind.value, _fmt_optional(c.target, ".6g"), f"{c.residual:+.6g}"]
                    for c in conflicts]
            self._table(LogLevel.DETAILED, "CONFLICT",
                        ["Constraint", "Kind", "Target", "Residual"],
                        rows, title="Conflicting Constraints")

    def log_null_space(self, directions: Sequence[Mapping[str, float]]) -> None:
        """Log free-parameter directions of an under-determined system."""
        self.log(LogLevel.SUMMARY, "NULLSPACE",
                 f"{len(directions)} free parameter(s)")
        if self.level < LogLevel.DETAILED:
            return
        for i, direction in enumerate(directions):
            terms = ", ".join(f"{k}={v:+.4f}" for k, v in direction.items() if v != 0.0)
            self.log(LogLevel.DETAILED, "NULLSPACE", f"  Direction {i}: {terms}")

    def log_completion_check(self, exists: Optional[bool]) -> None:
        if exists is None:
            return
        verdict = "exists" if exists else "does not exist"
        self.log(LogLevel.SUMMARY, "FEASIBILITY", f"Non-negative completion {verdict}")

    def log_negative_masses(self, negative: Mapping[str, float]) -> None:
        for ingredient_id, mass in negative.items():
            self.log(LogLevel.MINIMAL, "INFEASIBLE", f"{ingredient_id}: {mass:.4f} g")

    def log_cross_check(self, mismatches: Sequence[str]) -> None:
        """Log the independent recomputation of the specified targets."""
        if not mismatches:
            self.log(LogLevel.DETAILED, "CROSSCHECK", "All specified targets reproduced")
            return
        for mismatch in mismatches:
            self.log(LogLevel.MINIMAL, "CROSSCHECK", f"Mismatch: {mismatch}")

    # -------------------------------------------------------------------------
    # Result Logging
    # -------------------------------------------------------------------------

    def log_result_summary(self, result: Any) -> None:
        """Log final status and totals."""
        self.log(LogLevel.MINIMAL, "RESULT",
                 f"Status: {result.status.value}, "
                 f"total: {_fmt_optional(result.total_mass, '.2f')} g, "
                 f"flour: {_fmt_optional(result.total_flour, '.2f')} g")
        if result.is_solved:
            self.log(LogLevel.SUMMARY, "RESULT",
                     f"Hydration {_fmt_optional(result.hydration, '.2%')}, "
                     f"protein {_fmt_optional(result.protein_ratio, '.2%')}, "
                     f"salt {_fmt_optional(result.salt_ratio, '.2%')}")

    def log_masses(self, masses: Mapping[str, Optional[float]],
                   percentages: Mapping[str, float]) -> None:
        """Log resolved masses with baker's percentages."""
        if self.level < LogLevel.DETAILED:
            return
        rows = []
        for ingredient_id, mass in masses.items():
            pct = percentages.get(ingredient_id)
            rows.append([
                ingredient_id,
                _fmt_optional(mass, ".2f"),
                _fmt_optional(pct, ".2%"),
            ])
        self._table(LogLevel.DETAILED, "RESULT",
                    ["Ingredient", "Mass (g)", "Baker's %"],
                    rows, title="Resolved Masses")

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_all_entries(self) -> List[LogEntry]:
        return list(self.entries)

    def get_entries_by_category(self, category: str) -> List[LogEntry]:
        return [entry for entry in self.entries if entry.category == category]


def _as_level(level: Union[LogLevel, str, int]) -> LogLevel:
    if isinstance(level, LogLevel):
        return level
    if isinstance(level, str):
        return LogLevel[level.strip().upper()]
    return LogLevel(level)


def create_logger(
    level: Union[LogLevel, str, int] = LogLevel.SUMMARY,
    output: Optional[TextIO] = None,
    log_file: Optional[Path] = None,
) -> SolverLogger:
    """Build a logger from a level given as a name, number or ``LogLevel``."""
    return SolverLogger(level=_as_level(level), output=output, log_to_file=log_file)


def create_string_logger(level: LogLevel = LogLevel.DETAILED) -> Tuple[SolverLogger, StringIO]:
    """Return a logger together with the in-memory buffer it writes to."""
    buffer = StringIO()
    return SolverLogger(level=level, output=buffer), buffer
