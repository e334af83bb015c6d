"""Linear-programming check for a non-negative completion of an under-determined system."""
from __future__ import annotations

from typing import Optional

import numpy as np
import pulp # type: ignore

from .solver_logging import LogLevel, SolverLogger, create_logger


def has_nonnegative_completion(
    matrix: np.ndarray,
    rhs: np.ndarray,
    tolerance: float = 1e-9,
    logger: Optional[SolverLogger] = None,
) -> Optional[bool]:
    """
    Decide whether ``A x = b`` admits a solution with every ``x >= 0``.

    Minimises the total free mass so the LP is bounded. Only the existence
    of such a point is reported; the point itself is not a formula anyone
    asked for.

    Returns
    -------
    bool or None
        True/False from CBC, or None when CBC reached no verdict
    """
    if logger is None:
        logger = create_logger(level=LogLevel.SILENT)

    m, n = matrix.shape
    prob = pulp.LpProblem("NonNegativeCompletion", pulp.LpMinimize)
    x = [pulp.LpVariable(f"x_{j}", lowBound=0) for j in range(n)]
    prob += pulp.lpSum(x), "TotalFreeMass"

    for i in range(m):
        terms = [(x[j], float(matrix[i, j])) for j in range(n) if abs(matrix[i, j]) > tolerance]
        if not terms:
            if abs(rhs[i]) > tolerance:
                return False
            continue
        prob += pulp.LpAffineExpression(terms) == float(rhs[i]), f"Row_{i}"

    solver = pulp.PULP_CBC_CMD(msg=logger.level >= LogLevel.TRACE)
    try:
        prob.solve(solver)
    except pulp.PulpSolverError as exc:
        logger.log(LogLevel.MINIMAL, "FEASIBILITY", f"CBC failed: {exc}")
        return None

    status = pulp.LpStatus[prob.status]
    logger.log(LogLevel.DEBUG, "FEASIBILITY", f"CBC status: {status}")
    if status == "Optimal":
        return True
    if status == "Infeasible":
        return False
    return None
