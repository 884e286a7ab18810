"""
Hybrid GFA optimizer.

Three candidates are always computed and the best valid one wins:

  lp           exact LP solution around the current areas
  lp+mc        Monte Carlo refinement seeded from the LP solution
  mc_original  Monte Carlo from the unmodified configuration, independent
               of the LP (hedge against LP failure and against effects the
               linear model does not capture: deduction floors, rounding)

Monte Carlo trial: every type's typical area is multiplied by a factor drawn
from U[1 − r, 1 + r] (clamped to the type's own min/max area). A trial is
accepted only if no lot is "over" and the combined-FAR ceiling holds.

If no candidate is valid, the highest-GFA candidate is returned anyway and
``stats.degraded`` is set; callers must check it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from app.config import settings as engine_settings
from app.models.schemas import BuildingType, Project
from app.gfa_engine.evaluator import Evaluation, evaluate
from app.gfa_engine.formulation import solve_gfa, solution_types

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 50  # iterations between progress callbacks


# ──────────────────────────────────────────────────────────────────
# DATA CLASSES
# ──────────────────────────────────────────────────────────────────

@dataclass
class OptimizeOptions:
    iterations: Optional[int] = None  # default: settings.optimization_iterations
    perturbation_range: Optional[float] = None
    bounds_range: Optional[float] = None
    seed: Optional[int] = None


@dataclass
class MonteCarloResult:
    result: Evaluation
    types: list[BuildingType]
    baseline_gfa: float
    best_gfa: float
    valid: bool
    iterations: int
    valid_count: int = 0
    improved_count: int = 0


@dataclass
class Candidate:
    label: str
    result: Evaluation
    types: list[BuildingType]
    valid: bool
    iterations: int = 0

    @property
    def gfa(self) -> float:
        return self.result.project_total.total_counted_gfa

    def summary(self) -> dict:
        return {
            "label": self.label,
            "gfa": self.gfa,
            "valid": self.valid,
            "iterations": self.iterations,
        }


@dataclass
class OptimizationStats:
    method: str
    baseline_gfa: float
    best_gfa: float
    improvement: float  # percent
    binding_lots: list[str]
    lp_status: str
    lp_reason: Optional[str] = None
    degraded: bool = False  # True = no candidate satisfied every constraint
    total_iterations: int = 0
    candidates: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "baseline_gfa": self.baseline_gfa,
            "best_gfa": self.best_gfa,
            "improvement": self.improvement,
            "binding_lots": list(self.binding_lots),
            "lp_status": self.lp_status,
            "lp_reason": self.lp_reason,
            "degraded": self.degraded,
            "total_iterations": self.total_iterations,
            "candidates": [dict(c) for c in self.candidates],
        }


@dataclass
class OptimizationResult:
    result: Evaluation
    types: list[BuildingType]
    stats: OptimizationStats

    def to_dict(self) -> dict:
        return {
            "result": self.result.to_dict(),
            "types": [bt.model_dump() for bt in self.types],
            "stats": self.stats.to_dict(),
        }


# ──────────────────────────────────────────────────────────────────
# MONTE CARLO
# ──────────────────────────────────────────────────────────────────

def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Seeded generator; falls back to the configured seed, then to entropy."""
    if seed is None:
        seed = engine_settings.random_seed
    return np.random.default_rng(seed)


def perturb_types(
    types: list[BuildingType],
    perturbation_range: float,
    rng: np.random.Generator,
) -> list[BuildingType]:
    """One random trial: scale each type's area by U[1 − r, 1 + r]."""
    factors = rng.uniform(1 - perturbation_range, 1 + perturbation_range, size=len(types))
    trial = []
    for bt, factor in zip(types, factors):
        area = bt.typical_area * float(factor)
        if bt.min_area is not None:
            area = max(area, bt.min_area)
        if bt.max_area is not None:
            area = min(area, bt.max_area)
        trial.append(bt.model_copy(update={"typical_area": area}))
    return trial


def run_monte_carlo(
    project: Project,
    iterations: int,
    perturbation_range: float,
    rng: np.random.Generator,
    on_progress: Optional[Callable[[dict], None]] = None,
) -> MonteCarloResult:
    """Random perturbation search around ``project``'s current areas.

    Every trial perturbs the starting areas (not the running best). The
    starting configuration competes too when it is itself valid.
    """
    baseline = evaluate(project)
    baseline_gfa = baseline.project_total.total_counted_gfa

    best_result = baseline
    best_types = list(project.building_types)
    best_gfa = baseline_gfa
    best_valid = baseline.is_valid
    valid_count = 0
    improved_count = 0

    for i in range(iterations):
        trial_types = perturb_types(project.building_types, perturbation_range, rng)
        trial = evaluate(project.with_types(trial_types))

        if trial.is_valid:
            valid_count += 1
            gfa = trial.project_total.total_counted_gfa
            if not best_valid or gfa > best_gfa:
                best_result, best_types, best_gfa = trial, trial_types, gfa
                best_valid = True
                improved_count += 1

        if on_progress and (i + 1) % PROGRESS_EVERY == 0:
            on_progress({
                "iteration": i + 1,
                "total_iterations": iterations,
                "best_gfa": best_gfa,
                "valid_count": valid_count,
                "improved_count": improved_count,
                "progress": (i + 1) / iterations,
            })

    return MonteCarloResult(
        result=best_result,
        types=best_types,
        baseline_gfa=baseline_gfa,
        best_gfa=best_gfa,
        valid=best_valid,
        iterations=iterations,
        valid_count=valid_count,
        improved_count=improved_count,
    )


# ──────────────────────────────────────────────────────────────────
# HYBRID
# ──────────────────────────────────────────────────────────────────

def optimize(
    project: Project,
    options: Optional[OptimizeOptions] = None,
    rng: Optional[np.random.Generator] = None,
    on_progress: Optional[Callable[[dict], None]] = None,
) -> OptimizationResult:
    """Maximize total counted GFA while keeping every lot within its caps.

    Args:
        project: Configuration to optimize; never modified.
        options: Iteration count, perturbation range, LP bound band, seed.
        rng: Generator for the Monte Carlo passes; built from
            ``options.seed`` when omitted.
        on_progress: Called every few Monte Carlo iterations.

    Returns:
        OptimizationResult with the winning evaluation, its type table
        and stats describing every candidate.
    """
    options = options or OptimizeOptions()
    project_settings = project.settings
    iterations = options.iterations or project_settings.optimization_iterations
    perturbation_range = options.perturbation_range or project_settings.perturbation_range
    if rng is None:
        rng = make_rng(options.seed)

    mc_iterations = max(1, iterations // 2)
    baseline = evaluate(project)
    baseline_gfa = baseline.project_total.total_counted_gfa
    candidates: list[Candidate] = []

    # ── 1. Exact LP ──
    gfa = solve_gfa(project, bounds_range=options.bounds_range)
    if gfa.is_optimal:
        lp_types = solution_types(project, gfa)
        lp_project = project.with_types(lp_types)
        lp_result = evaluate(lp_project)
        candidates.append(Candidate("lp", lp_result, lp_types, lp_result.is_valid, 1))

        # ── 2. Monte Carlo from the LP solution ──
        refined = run_monte_carlo(
            lp_project, mc_iterations, perturbation_range, rng, on_progress,
        )
        candidates.append(Candidate(
            "lp+mc", refined.result, refined.types, refined.valid, mc_iterations,
        ))
    else:
        logger.warning(
            "LP pass unusable (%s: %s), continuing with Monte Carlo only",
            gfa.status, gfa.reason,
        )

    # ── 3. Monte Carlo from the original areas ──
    original = run_monte_carlo(
        project, mc_iterations, perturbation_range, rng, on_progress,
    )
    candidates.append(Candidate(
        "mc_original", original.result, original.types, original.valid, mc_iterations,
    ))

    valid = [c for c in candidates if c.valid]
    degraded = not valid
    best = max(valid or candidates, key=lambda c: c.gfa)
    if degraded:
        logger.warning("No candidate satisfies every constraint, returning %s", best.label)

    improvement = (
        (best.gfa - baseline_gfa) / baseline_gfa * 100 if baseline_gfa > 0 else 0.0
    )
    logger.info(
        "Optimization picked %s: %.1f → %.1f m² (%+.2f%%)",
        best.label, baseline_gfa, best.gfa, improvement,
    )

    stats = OptimizationStats(
        method=best.label,
        baseline_gfa=baseline_gfa,
        best_gfa=best.gfa,
        improvement=improvement,
        binding_lots=list(gfa.binding_lots),
        lp_status=gfa.status,
        lp_reason=gfa.reason,
        degraded=degraded,
        total_iterations=sum(c.iterations for c in candidates),
        candidates=[c.summary() for c in candidates],
    )
    return OptimizationResult(result=best.result, types=best.types, stats=stats)
