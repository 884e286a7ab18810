"""
Bounded-variable primal Simplex.

Solves:
    MAX  cᵀx
    s.t. A x ≤ b
         lb ≤ x ≤ ub

Method:
  1. Shift variables x' = x − lb so every variable is ≥ 0
     (A x' ≤ b − A·lb; a negative shifted RHS means infeasible at lb).
  2. Finite upper bounds x' ≤ ub − lb become extra ≤ rows.
  3. One slack per row gives the starting basis.
  4. Dantzig pivoting: most-negative reduced cost enters, minimum-ratio
     test over positive column entries picks the leaving row.

No knowledge of lots or buildings lives here. Small problems only
(tens of variables, ~100 rows); the tableau is dense.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

import numpy as np

from app.config import settings

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────
# RESULT VARIANTS
# ──────────────────────────────────────────────────────────────────

@dataclass
class LPOptimal:
    x: list[float]
    objective_value: float
    binding_constraints: list[int]  # indices into the caller's A rows
    slacks: list[float]  # b − A x per caller row
    iterations: int = 0
    status: str = field(default="optimal", init=False)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "x": list(self.x),
            "objective_value": self.objective_value,
            "binding_constraints": list(self.binding_constraints),
            "slacks": list(self.slacks),
            "iterations": self.iterations,
        }


@dataclass
class LPInfeasible:
    reason: str
    status: str = field(default="infeasible", init=False)

    def to_dict(self) -> dict:
        return {"status": self.status, "reason": self.reason}


@dataclass
class LPUnbounded:
    reason: str
    iteration_limit_reached: bool = False
    status: str = field(default="unbounded", init=False)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "reason": self.reason,
            "iteration_limit_reached": self.iteration_limit_reached,
        }


LPResult = Union[LPOptimal, LPInfeasible, LPUnbounded]


# ──────────────────────────────────────────────────────────────────
# SOLVER
# ──────────────────────────────────────────────────────────────────

def solve_lp(
    c: Sequence[float],
    A: Sequence[Sequence[float]],
    b: Sequence[float],
    lb: Optional[Sequence[float]] = None,
    ub: Optional[Sequence[Optional[float]]] = None,
    *,
    max_iterations: Optional[int] = None,
    tolerance: Optional[float] = None,
    binding_tolerance: Optional[float] = None,
) -> LPResult:
    """Maximize ``cᵀx`` subject to ``A x ≤ b`` and ``lb ≤ x ≤ ub``.

    Args:
        c: Objective coefficients (length n).
        A: Constraint matrix (m × n). May be empty.
        b: Right-hand sides (length m).
        lb: Finite lower bounds, default 0.
        ub: Upper bounds, default +∞. ``None`` entries mean no bound.
        max_iterations: Pivot cap; exceeding it is reported as unbounded
            with ``iteration_limit_reached=True``.
        tolerance: Pivot-selection noise floor.
        binding_tolerance: Slack below which a row counts as binding.

    Returns:
        LPOptimal, LPInfeasible or LPUnbounded.

    Raises:
        ValueError: If the argument shapes disagree, a lower bound is not
            finite, or max_iterations is negative.
    """
    if max_iterations is None:
        max_iterations = settings.simplex_max_iterations
    if max_iterations < 0:
        raise ValueError("max_iterations must be >= 0")
    tol = settings.simplex_tolerance if tolerance is None else tolerance
    bind_tol = settings.binding_tolerance if binding_tolerance is None else binding_tolerance

    c_vec = np.asarray(c, dtype=float)
    n = c_vec.size
    b_vec = np.asarray(b, dtype=float)
    m = b_vec.size

    if n == 0:
        return LPOptimal(x=[], objective_value=0.0, binding_constraints=[], slacks=[])

    A_mat = np.asarray(A, dtype=float) if len(A) else np.zeros((0, n))
    if A_mat.shape != (m, n):
        raise ValueError(f"A has shape {A_mat.shape}, expected ({m}, {n})")

    lb_vec = np.zeros(n) if lb is None else np.asarray(lb, dtype=float)
    if ub is None:
        ub_vec = np.full(n, np.inf)
    else:
        ub_vec = np.array([np.inf if u is None else u for u in ub], dtype=float)
    if lb_vec.size != n or ub_vec.size != n:
        raise ValueError("lb and ub must have one entry per variable")
    if not np.all(np.isfinite(lb_vec)):
        raise ValueError("Lower bounds must be finite")

    # ── Shift x' = x − lb ──
    b_shift = b_vec - A_mat @ lb_vec
    bad_rows = np.flatnonzero(b_shift < -tol)
    if bad_rows.size:
        return LPInfeasible(
            reason=f"Constraint {int(bad_rows[0])} infeasible even at lower bounds",
        )
    b_shift = np.maximum(b_shift, 0.0)

    ub_shift = ub_vec - lb_vec
    bad_vars = np.flatnonzero(ub_shift < -tol)
    if bad_vars.size:
        return LPInfeasible(
            reason=f"Variable {int(bad_vars[0])}: lower bound exceeds upper bound",
        )
    ub_shift = np.maximum(ub_shift, 0.0)

    # ── Upper bounds as extra rows ──
    bounded = np.flatnonzero(np.isfinite(ub_shift))
    A_ext = np.vstack([A_mat, np.eye(n)[bounded]])
    b_ext = np.concatenate([b_shift, ub_shift[bounded]])
    rows = A_ext.shape[0]
    total_vars = n + rows

    # ── Tableau: [A | I | b] with objective row [−c | 0 | 0] ──
    tableau = np.zeros((rows + 1, total_vars + 1))
    tableau[:rows, :n] = A_ext
    tableau[:rows, n:total_vars] = np.eye(rows)
    tableau[:rows, -1] = b_ext
    tableau[rows, :n] = -c_vec
    basis = list(range(n, total_vars))

    # max_iterations pivots, then one last optimality check
    for iterations in range(max_iterations + 1):
        reduced = tableau[rows, :total_vars]
        pivot_col = int(np.argmin(reduced))
        if reduced[pivot_col] >= -tol:
            break
        if iterations == max_iterations:
            logger.warning("Simplex hit the iteration limit (%d)", max_iterations)
            return LPUnbounded(
                reason=f"Iteration limit ({max_iterations}) reached without convergence",
                iteration_limit_reached=True,
            )

        column = tableau[:rows, pivot_col]
        positive = column > tol
        if not positive.any():
            logger.debug("Simplex: column %d has no positive entry, unbounded", pivot_col)
            return LPUnbounded(reason="Problem is unbounded")

        ratios = np.full(rows, np.inf)
        ratios[positive] = tableau[:rows, -1][positive] / column[positive]
        pivot_row = int(np.argmin(ratios))

        tableau[pivot_row] /= tableau[pivot_row, pivot_col]
        factors = tableau[:, pivot_col].copy()
        factors[pivot_row] = 0.0
        tableau -= np.outer(factors, tableau[pivot_row])
        basis[pivot_row] = pivot_col

    # ── Extract solution ──
    x_shift = np.zeros(n)
    slack_values = np.zeros(rows)
    for row, var in enumerate(basis):
        if var < n:
            x_shift[var] = tableau[row, -1]
        else:
            slack_values[var - n] = tableau[row, -1]

    x = x_shift + lb_vec
    objective = float(tableau[rows, -1] + c_vec @ lb_vec)

    slacks = slack_values[:m]
    binding = [int(i) for i in np.flatnonzero(np.abs(slacks) < bind_tol)]

    logger.debug("Simplex optimal after %d pivots, objective %.4f", iterations, objective)
    return LPOptimal(
        x=x.tolist(),
        objective_value=objective,
        binding_constraints=binding,
        slacks=slacks.tolist(),
        iterations=iterations,
    )
