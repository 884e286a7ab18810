"""
Reverse calculation: target on one lot → required building-type changes.

Forward:  configuration → GFA, K
Reverse:  target GFA / K / utilization on lot L → new typical areas + impact

Building types are shared, so changing a type to hit L's target moves every
other lot that uses the same type. The trial configuration is re-evaluated
project-wide and each violation on another lot becomes a warning; the trial and
its impact are returned even when the target is infeasible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from app.models.schemas import Project, ReverseGoal
from app.gfa_engine.evaluator import Evaluation, LotResult, evaluate
from app.gfa_engine.legal_rules import exceeds

logger = logging.getLogger(__name__)

BISECTION_STEPS = 30
SEARCH_HEADROOM = 1.5  # upper end of the search = 1.5 × lot capacity
FAR_CAP_MARGIN = 0.999  # within 0.1% of k_max → limited by the lot's own cap


# ──────────────────────────────────────────────────────────────────
# DATA CLASSES
# ──────────────────────────────────────────────────────────────────

@dataclass
class ReverseTarget:
    lot_id: str
    lot_name: Optional[str]
    target_gfa: float
    current_gfa: float
    delta_gfa: float
    required_k: float
    current_k: float

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "lot_name": self.lot_name,
            "target_gfa": self.target_gfa,
            "current_gfa": self.current_gfa,
            "delta_gfa": self.delta_gfa,
            "required_k": self.required_k,
            "current_k": self.current_k,
        }


@dataclass
class TypeChange:
    type_id: str
    label: str
    old_typical_area: float
    new_typical_area: float
    percent_change: float
    affected_lots: list[str]

    def to_dict(self) -> dict:
        return {
            "type_id": self.type_id,
            "label": self.label,
            "old_typical_area": self.old_typical_area,
            "new_typical_area": self.new_typical_area,
            "percent_change": self.percent_change,
            "affected_lots": list(self.affected_lots),
        }


@dataclass
class LotImpact:
    lot_id: str
    lot_name: Optional[str]
    is_target: bool
    is_affected: bool  # holds at least one changed type
    k_before: float
    k_after: float
    k_max: float
    density_before: float
    density_after: float
    density_max: float
    gfa_before: float
    gfa_after: float
    population_before: float
    population_after: float
    utilization_before: float
    utilization_after: float
    status_before: str
    status_after: str
    exceeds_k: bool
    exceeds_density: bool
    exceeds_population: bool

    @property
    def k_delta(self) -> float:
        return self.k_after - self.k_before

    @property
    def gfa_delta(self) -> float:
        return self.gfa_after - self.gfa_before

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "lot_name": self.lot_name,
            "is_target": self.is_target,
            "is_affected": self.is_affected,
            "k_before": self.k_before,
            "k_after": self.k_after,
            "k_max": self.k_max,
            "k_delta": self.k_delta,
            "density_before": self.density_before,
            "density_after": self.density_after,
            "density_max": self.density_max,
            "gfa_before": self.gfa_before,
            "gfa_after": self.gfa_after,
            "gfa_delta": self.gfa_delta,
            "population_before": self.population_before,
            "population_after": self.population_after,
            "utilization_before": self.utilization_before,
            "utilization_after": self.utilization_after,
            "status_before": self.status_before,
            "status_after": self.status_after,
            "exceeds_k": self.exceeds_k,
            "exceeds_density": self.exceeds_density,
            "exceeds_population": self.exceeds_population,
        }


@dataclass
class ProjectImpact:
    gfa_before: float
    gfa_after: float
    far_before: float
    far_after: float
    far_exceeds: bool

    def to_dict(self) -> dict:
        return {
            "gfa_before": self.gfa_before,
            "gfa_after": self.gfa_after,
            "gfa_delta": self.gfa_after - self.gfa_before,
            "far_before": self.far_before,
            "far_after": self.far_after,
            "far_exceeds": self.far_exceeds,
        }


@dataclass
class ReverseResult:
    feasible: bool
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    target: Optional[ReverseTarget] = None
    type_changes: list[TypeChange] = field(default_factory=list)
    required_typical_areas: dict[str, float] = field(default_factory=dict)
    impact_on_lots: dict[str, LotImpact] = field(default_factory=dict)
    trial_result: Optional[Evaluation] = None
    trial_types: list = field(default_factory=list)
    project_impact: Optional[ProjectImpact] = None
    # Set when the target is above the lot's own FAR cap
    max_feasible_gfa: Optional[float] = None
    max_feasible_k: Optional[float] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "feasible": self.feasible,
            "error": self.error,
            "warnings": list(self.warnings),
            "target": self.target.to_dict() if self.target else None,
            "type_changes": [tc.to_dict() for tc in self.type_changes],
            "required_typical_areas": dict(self.required_typical_areas),
            "impact_on_lots": {k: v.to_dict() for k, v in self.impact_on_lots.items()},
            "trial_result": self.trial_result.to_dict() if self.trial_result else None,
            "trial_types": [bt.model_dump() for bt in self.trial_types],
            "project_impact": self.project_impact.to_dict() if self.project_impact else None,
            "max_feasible_gfa": self.max_feasible_gfa,
            "max_feasible_k": self.max_feasible_k,
            "suggestion": self.suggestion,
        }


@dataclass
class MaxFeasibleResult:
    max_gfa: float
    max_k: float
    limited_by: str  # "far_cap" or "shared_type"
    result: ReverseResult

    def to_dict(self) -> dict:
        return {
            "max_gfa": self.max_gfa,
            "max_k": self.max_k,
            "limited_by": self.limited_by,
            "result": self.result.to_dict(),
        }


def _fail(error: str) -> ReverseResult:
    return ReverseResult(feasible=False, error=error)


# ──────────────────────────────────────────────────────────────────
# TARGET RESOLUTION
# ──────────────────────────────────────────────────────────────────

def resolve_target_gfa(target: ReverseGoal, area: float, k_max: float) -> Optional[float]:
    """Counted GFA implied by whichever target field is set (None if none is)."""
    if target.total_gfa is not None:
        return target.total_gfa
    if target.far_target is not None:
        return target.far_target * area
    if target.utilization_target is not None:
        return target.utilization_target * k_max * area
    return None


# ──────────────────────────────────────────────────────────────────
# REVERSE CALCULATION
# ──────────────────────────────────────────────────────────────────

def reverse_calculate(
    project: Project,
    current_result: Optional[Evaluation],
    lot_id: str,
    target: ReverseGoal,
    locked_type_ids: Optional[list[str]] = None,
) -> ReverseResult:
    """Compute the type-area changes that bring ``lot_id`` to ``target``.

    Locked types keep their area; every other type on the lot is scaled by
    one common factor so the lot's counted GFA reaches the target. The new
    areas apply to every lot using those types.

    Feasibility covers the other lots' caps and the combined-FAR ceiling.
    The target lot is bounded by its K max only; its density and population
    after the change are reported in ``impact_on_lots``.

    Args:
        project: Current configuration (not modified).
        current_result: ``evaluate(project)``; computed when None.
        lot_id: Lot whose metric is targeted.
        target: Exactly one of total_gfa, far_target, utilization_target.
        locked_type_ids: Types whose area must not change.

    Returns:
        ReverseResult. Problems are reported through ``error`` / ``warnings``
        with ``feasible=False``; nothing is raised.
    """
    locked = set(locked_type_ids or [])
    if current_result is None:
        current_result = evaluate(project)

    lot = next((l for l in project.lots if l.id == lot_id), None)
    if lot is None:
        return _fail(f"Lot {lot_id!r} does not exist")

    lr = current_result.lot_result(lot_id)
    if lr is None or not lr.buildings:
        return _fail(f"Lot {lot_id} has no buildings assigned")

    set_fields = [
        v for v in (target.total_gfa, target.far_target, target.utilization_target)
        if v is not None
    ]
    if not set_fields:
        return _fail("Missing target (total_gfa, far_target or utilization_target)")
    if len(set_fields) > 1:
        return _fail("Give only one of total_gfa, far_target, utilization_target")

    target_gfa = resolve_target_gfa(target, lot.area, lot.k_max)
    if target_gfa < 0:
        return _fail("Target GFA cannot be negative")
    if lot.area <= 0:
        return _fail(f"Lot {lot_id} has no land area")

    required_k = target_gfa / lot.area
    if exceeds(required_k, lot.k_max):
        max_gfa = lot.area * lot.k_max
        return ReverseResult(
            feasible=False,
            error=f"Required K = {required_k:.2f} > K max = {lot.k_max:.2f}",
            max_feasible_gfa=max_gfa,
            max_feasible_k=lot.k_max,
            suggestion=f"Maximum GFA for this lot = {max_gfa:,.0f} m² (K = {lot.k_max:.2f})",
        )

    current_gfa = lr.total_counted_gfa
    if current_gfa <= 0:
        return _fail(f"Lot {lot_id} currently has no counted GFA")

    type_ids_in_lot = list(dict.fromkeys(b.type_id for b in lr.buildings))
    changeable = [tid for tid in type_ids_in_lot if tid not in locked]
    if not changeable:
        return _fail("All building types on this lot are locked")

    locked_gfa = 0.0
    changeable_gfa = 0.0
    for b in lr.buildings:
        if b.type_id in locked:
            locked_gfa += b.counted_gfa
        else:
            changeable_gfa += b.counted_gfa

    required_changeable = target_gfa - locked_gfa
    if required_changeable < 0:
        return _fail("Locked building types already exceed the target GFA")
    if changeable_gfa <= 0:
        return _fail("Unlocked building types contribute no counted GFA")

    scale = required_changeable / changeable_gfa

    # ── New areas, applied project-wide ──
    type_map = {bt.id: bt for bt in project.building_types}
    required_areas = {tid: type_map[tid].typical_area * scale for tid in changeable}
    trial_types = [
        bt.model_copy(update={"typical_area": required_areas[bt.id]})
        if bt.id in required_areas else bt
        for bt in project.building_types
    ]
    trial_result = evaluate(project.with_types(trial_types))

    affected_lots = {
        lot_result.lot.id
        for lot_result in current_result.lot_results
        if any(b.type_id in required_areas for b in lot_result.buildings)
    }

    warnings: list[str] = []
    impact_on_lots: dict[str, LotImpact] = {}
    for trial_lr in trial_result.lot_results:
        before = current_result.lot_result(trial_lr.lot.id)
        if before is None:
            continue
        impact = _lot_impact(before, trial_lr, lot_id, affected_lots)
        impact_on_lots[trial_lr.lot.id] = impact
        if impact.is_affected and not impact.is_target:
            warnings.extend(_impact_warnings(impact, trial_lr))

    far_after = trial_result.project_total.combined_far
    far_exceeds = not trial_result.project_total.combined_far_compliant
    if far_exceeds:
        warnings.append(
            f"Combined FAR = {far_after:.2f} exceeds the limit of "
            f"{trial_result.project_total.max_combined_far:.0f}"
        )

    type_changes = []
    for tid in changeable:
        old = type_map[tid].typical_area
        new = required_areas[tid]
        type_changes.append(TypeChange(
            type_id=tid,
            label=type_map[tid].label or tid,
            old_typical_area=old,
            new_typical_area=new,
            percent_change=(new - old) / old * 100 if old > 0 else 0.0,
            affected_lots=sorted(
                l for l in affected_lots
                if any(b.type_id == tid for b in current_result.lot_result(l).buildings)
            ),
        ))

    if warnings:
        logger.info("Reverse target on %s infeasible: %s", lot_id, "; ".join(warnings))

    return ReverseResult(
        feasible=not warnings,
        warnings=warnings,
        target=ReverseTarget(
            lot_id=lot_id,
            lot_name=lot.name,
            target_gfa=target_gfa,
            current_gfa=current_gfa,
            delta_gfa=target_gfa - current_gfa,
            required_k=required_k,
            current_k=lr.k_achieved,
        ),
        type_changes=type_changes,
        required_typical_areas=required_areas,
        impact_on_lots=impact_on_lots,
        trial_result=trial_result,
        trial_types=trial_types,
        project_impact=ProjectImpact(
            gfa_before=current_result.project_total.total_counted_gfa,
            gfa_after=trial_result.project_total.total_counted_gfa,
            far_before=current_result.project_total.combined_far,
            far_after=far_after,
            far_exceeds=far_exceeds,
        ),
    )


def _lot_impact(
    before: LotResult,
    after: LotResult,
    target_lot_id: str,
    affected_lots: set[str],
) -> LotImpact:
    lot = after.lot
    return LotImpact(
        lot_id=lot.id,
        lot_name=lot.name,
        is_target=lot.id == target_lot_id,
        is_affected=lot.id in affected_lots,
        k_before=before.k_achieved,
        k_after=after.k_achieved,
        k_max=lot.k_max,
        density_before=before.density_achieved,
        density_after=after.density_achieved,
        density_max=lot.density_max,
        gfa_before=before.total_counted_gfa,
        gfa_after=after.total_counted_gfa,
        population_before=before.population,
        population_after=after.population,
        utilization_before=before.utilization_rate,
        utilization_after=after.utilization_rate,
        status_before=before.status,
        status_after=after.status,
        exceeds_k=after.is_over_k,
        exceeds_density=after.is_over_density,
        exceeds_population=after.is_over_population,
    )


def _impact_warnings(impact: LotImpact, after: LotResult) -> list[str]:
    """Human-readable cap violations for one affected lot."""
    out = []
    if impact.exceeds_k:
        out.append(
            f"{impact.lot_id}: K = {impact.k_after:.2f} exceeds K max = {impact.k_max:.2f}"
        )
    if impact.exceeds_density:
        out.append(
            f"{impact.lot_id}: density = {impact.density_after * 100:.1f}% "
            f"exceeds max = {impact.density_max * 100:.0f}%"
        )
    if impact.exceeds_population:
        out.append(
            f"{impact.lot_id}: population = {impact.population_after:,.0f} "
            f"exceeds max = {after.lot.max_population:,.0f}"
        )
    return out


# ──────────────────────────────────────────────────────────────────
# MAXIMUM FEASIBLE TARGET
# ──────────────────────────────────────────────────────────────────

def find_max_feasible_gfa(
    project: Project,
    current_result: Optional[Evaluation],
    lot_id: str,
    locked_type_ids: Optional[list[str]] = None,
    steps: int = BISECTION_STEPS,
) -> Optional[MaxFeasibleResult]:
    """Bisection on the lot's target GFA using ``reverse_calculate`` as oracle.

    Returns None if the lot does not exist, has no buildings, or no tested
    target is feasible.
    """
    lot = next((l for l in project.lots if l.id == lot_id), None)
    if lot is None:
        return None
    if current_result is None:
        current_result = evaluate(project)
    lr = current_result.lot_result(lot_id)
    if lr is None or not lr.buildings:
        return None

    low = 0.0
    high = lot.k_max * lot.area * SEARCH_HEADROOM
    best: Optional[MaxFeasibleResult] = None

    for _ in range(steps):
        mid = (low + high) / 2
        trial = reverse_calculate(
            project, current_result, lot_id,
            ReverseGoal(total_gfa=mid), locked_type_ids,
        )
        if trial.feasible:
            best = MaxFeasibleResult(
                max_gfa=mid,
                max_k=mid / lot.area if lot.area > 0 else 0.0,
                limited_by="",
                result=trial,
            )
            low = mid
        else:
            high = mid

    if best is not None:
        best.limited_by = (
            "far_cap" if best.max_k >= lot.k_max * FAR_CAP_MARGIN else "shared_type"
        )
    return best
