"""
Classify and solve the assembled system with numpy.

Gauss-Jordan elimination with partial pivoting gives the rank, the pivot
columns and (when there is one) the exact solution. A least-squares fit
decides consistency and supplies the residuals used to rank conflicting
constraints.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from .builder import ConstraintKind, LinearSystem
from .config import DEFAULT_TOLERANCE
from .solver_logging import LogLevel, SolverLogger, create_logger


class SolveStatus(str, Enum):
    UNIQUE = "Unique"
    UNDERDETERMINED = "Underdetermined"
    OVERDETERMINED = "Overdetermined"  # redundant rows, all consistent
    INCONSISTENT = "Inconsistent"
    INFEASIBLE = "Infeasible"  # unique, but some mass is negative


SOLVED_STATUSES = frozenset({SolveStatus.UNIQUE, SolveStatus.OVERDETERMINED})


@dataclass(frozen=True)
class ConstraintResidual:
    """How far the best-fit masses miss one constraint row, in grams."""
    name: str
    kind: ConstraintKind
    residual: float
    target: Optional[float] = None


@dataclass
class SystemSolution:
    """
    Outcome of solving a LinearSystem.

    Attributes
    ----------
    status : SolveStatus
    values : numpy.ndarray, optional
        Unknown masses (column order) for Unique, Overdetermined and
        Infeasible systems; None otherwise
    rank, equations, unknowns : int
    residual_tolerance : float
        Absolute tolerance, in grams, a row residual was held to
    best_fit : numpy.ndarray, optional
        Least-squares (minimum-norm) masses
    conflicts : list[ConstraintResidual]
        Rows missed by the best fit, largest first
    null_space : list[numpy.ndarray]
        Basis of the directions left free by an under-determined system
    negative : list[int]
        Columns with a negative mass
    """
    status: SolveStatus
    values: Optional[np.ndarray]
    rank: int
    equations: int
    unknowns: int
    residual_tolerance: float
    best_fit: Optional[np.ndarray] = None
    conflicts: List[ConstraintResidual] = field(default_factory=list)
    null_space: List[np.ndarray] = field(default_factory=list)
    negative: List[int] = field(default_factory=list)
    notes: List[str] = field(default_factory=list)

    @property
    def is_solved(self) -> bool:
        return self.status in SOLVED_STATUSES


def row_reduce(
    augmented: np.ndarray,
    tolerance: float = DEFAULT_TOLERANCE,
    logger: Optional[SolverLogger] = None,
) -> Tuple[np.ndarray, List[int]]:
    """
    Reduce ``[A | b]`` to reduced row echelon form.

    The last column is treated as the right-hand side and never pivoted on.
    Entries smaller than ``tolerance * max|A|`` count as zero.

    Returns
    -------
    tuple
        (reduced copy of ``augmented``, pivot column per non-zero row)
    """
    reduced = np.array(augmented, dtype=float, copy=True)
    m, width = reduced.shape
    n = width - 1
    pivots: List[int] = []
    if m == 0 or n == 0:
        return reduced, pivots

    scale = float(np.max(np.abs(reduced[:, :n])))
    pivot_tol = tolerance * max(1.0, scale)

    row = 0
    for col in range(n):
        if row >= m:
            break
        candidate = row + int(np.argmax(np.abs(reduced[row:, col])))
        value = reduced[candidate, col]
        if abs(value) <= pivot_tol:
            reduced[row:, col] = 0.0
            continue

        if logger is not None:
            logger.log_pivot(len(pivots), col, candidate, value)

        if candidate != row:
            reduced[[row, candidate]] = reduced[[candidate, row]]
        reduced[row] = reduced[row] / value

        for other in range(m):
            if other != row and reduced[other, col] != 0.0:
                reduced[other] -= reduced[other, col] * reduced[row]

        pivots.append(col)
        row += 1

    return reduced, pivots


def null_space_basis(reduced: np.ndarray, pivots: List[int], unknowns: int) -> List[np.ndarray]:
    """One direction per free column: set it to 1 and back-substitute the pivots."""
    free_columns = [c for c in range(unknowns) if c not in pivots]
    basis = []
    for free in free_columns:
        direction = np.zeros(unknowns)
        direction[free] = 1.0
        for r, pivot in enumerate(pivots):
            direction[pivot] = -reduced[r, free]
        basis.append(direction)
    return basis


def _best_fit(matrix: np.ndarray, rhs: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Minimum-norm least-squares solution and the residual of each row."""
    m, n = matrix.shape
    if n == 0:
        return np.zeros(0), -rhs
    if m == 0:
        return np.zeros(n), np.zeros(0)
    solution, *_ = np.linalg.lstsq(matrix, rhs, rcond=None)
    return solution, matrix @ solution - rhs


def _residual_tolerance(matrix: np.ndarray, rhs: np.ndarray, x: np.ndarray, tolerance: float) -> float:
    scale = 1.0
    if rhs.size:
        scale = max(scale, float(np.max(np.abs(rhs))))
    if matrix.size and x.size:
        scale = max(scale, float(np.max(np.abs(matrix))) * float(np.max(np.abs(x))))
    return tolerance * scale


def rank_conflicts(
    system: LinearSystem,
    residuals: np.ndarray,
    residual_tolerance: float,
) -> List[ConstraintResidual]:
    """Rows whose residual exceeds the tolerance, largest first."""
    conflicts = [
        ConstraintResidual(name=row.name, kind=row.kind,
                           residual=float(residuals[i]), target=row.target)
        for i, row in enumerate(system.rows)
        if abs(residuals[i]) > residual_tolerance
    ]
    conflicts.sort(key=lambda c: abs(c.residual), reverse=True)
    return conflicts


def solve_system(
    system: LinearSystem,
    tolerance: float = DEFAULT_TOLERANCE,
    logger: Optional[SolverLogger] = None,
) -> SystemSolution:
    """
    Classify ``system`` and solve it where the masses are determined.

    Consistency is checked first, so a singular square system whose rows
    contradict each other is reported as Inconsistent rather than
    Underdetermined.
    """
    if logger is None:
        logger = create_logger(level=LogLevel.SILENT)

    matrix, rhs = system.matrix, system.rhs
    m, n = matrix.shape

    if not (np.all(np.isfinite(matrix)) and np.all(np.isfinite(rhs))):
        logger.log(LogLevel.MINIMAL, "SOLVER", "System contains non-finite coefficients")
        return SystemSolution(
            status=SolveStatus.INCONSISTENT, values=None, rank=0,
            equations=m, unknowns=n, residual_tolerance=tolerance,
            notes=["system contains non-finite coefficients"],
        )

    reduced, pivots = row_reduce(np.column_stack([matrix, rhs]), tolerance, logger)
    rank = len(pivots)

    try:
        best_fit, residuals = _best_fit(matrix, rhs)
    except np.linalg.LinAlgError as exc:
        logger.log(LogLevel.MINIMAL, "SOLVER", f"Least-squares fit failed: {exc}")
        return SystemSolution(
            status=SolveStatus.INCONSISTENT, values=None, rank=rank,
            equations=m, unknowns=n, residual_tolerance=tolerance,
            notes=[f"least-squares fit failed: {exc}"],
        )

    residual_tol = _residual_tolerance(matrix, rhs, best_fit, tolerance)

    # ----- Inconsistent -----
    conflicts = rank_conflicts(system, residuals, residual_tol)
    if conflicts:
        logger.log_classification(SolveStatus.INCONSISTENT.value, m, n, rank)
        logger.log_conflicts(conflicts)
        return SystemSolution(
            status=SolveStatus.INCONSISTENT, values=None, rank=rank,
            equations=m, unknowns=n, residual_tolerance=residual_tol,
            best_fit=best_fit, conflicts=conflicts,
        )

    # ----- Underdetermined -----
    if rank < n:
        logger.log_classification(SolveStatus.UNDERDETERMINED.value, m, n, rank)
        return SystemSolution(
            status=SolveStatus.UNDERDETERMINED, values=None, rank=rank,
            equations=m, unknowns=n, residual_tolerance=residual_tol,
            best_fit=best_fit, null_space=null_space_basis(reduced, pivots, n),
        )

    # ----- Determined: read the solution off the reduced matrix -----
    values = np.zeros(n)
    for r, pivot in enumerate(pivots):
        values[pivot] = reduced[r, n]

    if not np.all(np.isfinite(values)):
        logger.log(LogLevel.MINIMAL, "SOLVER", "Elimination produced non-finite masses")
        return SystemSolution(
            status=SolveStatus.INCONSISTENT, values=None, rank=rank,
            equations=m, unknowns=n, residual_tolerance=residual_tol,
            best_fit=best_fit, notes=["elimination produced non-finite masses"],
        )

    negative = [j for j in range(n) if values[j] < -residual_tol]
    # Round-off just below zero is a zero mass.
    values[(values < 0.0) & (values >= -residual_tol)] = 0.0

    notes: List[str] = []
    if negative:
        status = SolveStatus.INFEASIBLE
    elif m > n:
        status = SolveStatus.OVERDETERMINED
        notes.append(f"{m - n} redundant constraint(s), consistent within tolerance")
    else:
        status = SolveStatus.UNIQUE

    logger.log_classification(status.value, m, n, rank)
    return SystemSolution(
        status=status, values=values, rank=rank,
        equations=m, unknowns=n, residual_tolerance=residual_tol,
        best_fit=best_fit, negative=negative, notes=notes,
    )
