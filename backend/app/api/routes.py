from __future__ import annotations

from fastapi import APIRouter, HTTPException

from app.models.schemas import (
    LPOptimizeRequest, LPSolveRequest, MaxFeasibleRequest, OptimizeRequest,
    Project, ReverseRequest,
)
from app.gfa_engine.evaluator import evaluate
from app.gfa_engine.formulation import compute_sensitivity, formulate_gfa_problem, solve_gfa
from app.gfa_engine.lp_solver import solve_lp
from app.gfa_engine.optimizer import OptimizeOptions, optimize
from app.gfa_engine.reverse import find_max_feasible_gfa, reverse_calculate
from app.gfa_engine.sample_project import default_project
from app.gfa_engine.validation import validate_project

router = APIRouter(prefix="/api/v1")


@router.get("/sample-project")
def sample_project():
    """Example configuration, useful as a request body template."""
    return default_project().model_dump()


@router.post("/evaluate")
def evaluate_project(project: Project):
    """Per-lot and project-wide metrics for the configuration as given."""
    return evaluate(project).to_dict()


@router.post("/validate")
def validate(project: Project):
    """Configuration issues (unknown references, invalid caps, unassigned lots)."""
    issues = validate_project(project)
    return {
        "valid": not any(i.level == "error" for i in issues),
        "issues": [i.to_dict() for i in issues],
    }


@router.post("/lp/solve")
def lp_solve(request: LPSolveRequest):
    """Solve a raw LP: max cᵀx s.t. Ax ≤ b, lb ≤ x ≤ ub."""
    try:
        result = solve_lp(request.c, request.A, request.b, request.lb, request.ub)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return result.to_dict()


@router.post("/optimize/lp")
def optimize_lp(request: LPOptimizeRequest):
    """Exact LP solution for the project plus per-type sensitivity ranges."""
    problem = formulate_gfa_problem(
        request.project,
        bounds_min=request.bounds_min,
        bounds_max=request.bounds_max,
        bounds_range=request.bounds_range,
        include_density=request.include_density,
    )
    gfa = solve_gfa(request.project, problem=problem)
    sensitivity = compute_sensitivity(gfa, problem)
    return {
        **gfa.to_dict(),
        "sensitivity": {k: v.to_dict() for k, v in sensitivity.items()},
    }


@router.post("/optimize")
def optimize_project(request: OptimizeRequest):
    """Hybrid LP + Monte Carlo optimization."""
    options = OptimizeOptions(
        iterations=request.iterations,
        perturbation_range=request.perturbation_range,
        bounds_range=request.bounds_range,
        seed=request.seed,
    )
    return optimize(request.project, options).to_dict()


@router.post("/reverse")
def reverse(request: ReverseRequest):
    """Type-area changes needed to hit a target on one lot, with cross-lot impact."""
    if not any(lot.id == request.lot_id for lot in request.project.lots):
        raise HTTPException(status_code=404, detail=f"Lot {request.lot_id} not found")
    current = evaluate(request.project)
    result = reverse_calculate(
        request.project, current, request.lot_id, request.target, request.locked_type_ids,
    )
    return result.to_dict()


@router.post("/reverse/max-feasible")
def max_feasible(request: MaxFeasibleRequest):
    """Largest feasible counted GFA for one lot, and what limits it."""
    if not any(lot.id == request.lot_id for lot in request.project.lots):
        raise HTTPException(status_code=404, detail=f"Lot {request.lot_id} not found")
    best = find_max_feasible_gfa(
        request.project, None, request.lot_id, request.locked_type_ids,
    )
    if best is None:
        raise HTTPException(
            status_code=422,
            detail=f"No feasible target found for lot {request.lot_id}",
        )
    return best.to_dict()
