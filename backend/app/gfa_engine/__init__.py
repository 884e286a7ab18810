from __future__ import annotations

from app.gfa_engine.evaluator import evaluate, evaluate_configuration
from app.gfa_engine.formulation import compute_sensitivity, formulate_gfa_problem, solve_gfa
from app.gfa_engine.lp_solver import solve_lp
from app.gfa_engine.optimizer import optimize
from app.gfa_engine.reverse import find_max_feasible_gfa, reverse_calculate
from app.gfa_engine.validation import validate_project

__all__ = [
    "evaluate",
    "evaluate_configuration",
    "compute_sensitivity",
    "formulate_gfa_problem",
    "solve_gfa",
    "solve_lp",
    "optimize",
    "find_max_feasible_gfa",
    "reverse_calculate",
    "validate_project",
]
