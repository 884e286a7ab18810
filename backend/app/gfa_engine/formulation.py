"""
GFA optimization as a linear program.

Variables:   S_t = typical_area_t × total_floors_t  (GFA of one building of type t)
Objective:   MAX Σ_t N_t × S_t                      (N_t = instances of t in the project)

Rows, in this order (disjoint index ranges):
  [0, m)          FAR         Σ_t n_tl × S_t ≤ area_l × k_max_l          one per lot
  [m, m+p)        population  Σ_t n_tl × coeff_t × S_t ≤ max_pop_l        lots with a cap
  [m+p, m+p+d)    density     Σ_t n_tl × S_t / floors_t ≤ area_l × dmax_l  assigned lots

coeff_t = residential floors / total floors × net area ratio / m² per person.

Because one S_t serves every lot the type appears in, the LP keeps all
instances of a type identical by construction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from app.config import settings as engine_settings
from app.models.schemas import BuildingType, Project
from app.gfa_engine.evaluator import group_assignments, population_coefficient
from app.gfa_engine.lp_solver import LPOptimal, solve_lp

logger = logging.getLogger(__name__)

ROW_FAR = "far"
ROW_POPULATION = "population"
ROW_DENSITY = "density"


# ──────────────────────────────────────────────────────────────────
# DATA CLASSES
# ──────────────────────────────────────────────────────────────────

@dataclass
class GFAProblem:
    """LP matrices plus the bookkeeping needed to decode a solution."""
    type_ids: list[str]
    c: list[float]
    A: list[list[float]]
    b: list[float]
    lb: list[float]
    ub: list[float]
    row_lots: list[str]  # lot id per row
    row_kinds: list[str]  # ROW_FAR / ROW_POPULATION / ROW_DENSITY per row
    counts: dict[str, dict[str, int]]  # lot id → type id → instances
    current: dict[str, float]  # type id → current S_t
    user_min: dict[str, float] = field(default_factory=dict)

    def rows_of(self, kind: str) -> list[int]:
        return [i for i, k in enumerate(self.row_kinds) if k == kind]


@dataclass
class LPLotDetail:
    lot_id: str
    lot_area: float
    k_max: float
    total_gfa: float
    k_achieved: float
    utilization: float
    max_gfa: float
    remaining_gfa: float
    building_count: int
    buildings: list[dict]
    is_binding: bool

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "lot_area": self.lot_area,
            "k_max": self.k_max,
            "total_gfa": self.total_gfa,
            "k_achieved": self.k_achieved,
            "utilization": self.utilization,
            "max_gfa": self.max_gfa,
            "remaining_gfa": self.remaining_gfa,
            "building_count": self.building_count,
            "buildings": [dict(b) for b in self.buildings],
            "is_binding": self.is_binding,
        }


@dataclass
class GFASolution:
    status: str
    reason: Optional[str] = None
    solution: dict[str, float] = field(default_factory=dict)  # type id → S_t
    typical_areas: dict[str, float] = field(default_factory=dict)
    total_gfa: float = 0
    lot_details: list[LPLotDetail] = field(default_factory=list)
    binding_lots: list[str] = field(default_factory=list)
    binding_population_lots: list[str] = field(default_factory=list)
    binding_density_lots: list[str] = field(default_factory=list)

    @property
    def is_optimal(self) -> bool:
        return self.status == "optimal"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "reason": self.reason,
            "solution": dict(self.solution),
            "typical_areas": dict(self.typical_areas),
            "total_gfa": self.total_gfa,
            "lot_details": [d.to_dict() for d in self.lot_details],
            "binding_lots": list(self.binding_lots),
            "binding_population_lots": list(self.binding_population_lots),
            "binding_density_lots": list(self.binding_density_lots),
        }


@dataclass
class SensitivityRange:
    type_id: str
    min: float
    max: Optional[float]  # None = no row limits this type
    optimal: float
    limiting_lot: Optional[str] = None
    limiting_constraint: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type_id": self.type_id,
            "min": self.min,
            "max": self.max,
            "optimal": self.optimal,
            "limiting_lot": self.limiting_lot,
            "limiting_constraint": self.limiting_constraint,
        }


# ──────────────────────────────────────────────────────────────────
# FORMULATION
# ──────────────────────────────────────────────────────────────────

def _variable_bounds(
    bt: BuildingType,
    current: float,
    bounds_min: dict[str, float],
    bounds_max: dict[str, float],
    bounds_range: float,
) -> tuple[float, float, Optional[float]]:
    """(lb, ub, user lower bound or None) for one type, in GFA units."""
    floors = bt.total_floors
    if bt.id in bounds_min:
        lower = user_min = bounds_min[bt.id]
    elif bt.min_area is not None:
        lower = user_min = bt.min_area * floors
    else:
        lower, user_min = current * (1 - bounds_range), None

    if bt.id in bounds_max:
        upper = bounds_max[bt.id]
    elif bt.max_area is not None:
        upper = bt.max_area * floors
    else:
        upper = current * (1 + bounds_range)

    return lower, upper, user_min


def formulate_gfa_problem(
    project: Project,
    bounds_min: Optional[dict[str, float]] = None,
    bounds_max: Optional[dict[str, float]] = None,
    bounds_range: Optional[float] = None,
    include_density: bool = True,
) -> GFAProblem:
    """Build the LP for ``project`` around its current type areas.

    Args:
        project: Lots, types, assignments and population settings.
        bounds_min: Per-type minimum S_t, overrides everything else.
        bounds_max: Per-type maximum S_t, overrides everything else.
        bounds_range: Band around the current S_t used when a type has no
            explicit or type-level bound (0.5 = ±50%).
        include_density: Add the per-lot footprint rows.
    """
    bounds_min = bounds_min or {}
    bounds_max = bounds_max or {}
    if bounds_range is None:
        bounds_range = project.settings.bounds_range

    types = project.building_types
    type_ids = [bt.id for bt in types]
    index = {tid: i for i, tid in enumerate(type_ids)}
    n = len(types)
    project_settings = project.settings

    placed = group_assignments(project.assignments)
    counts: dict[str, dict[str, int]] = {}
    for lot in project.lots:
        lot_counts: dict[str, int] = {}
        for type_id in placed.get(lot.id, []):
            if type_id in index:
                lot_counts[type_id] = lot_counts.get(type_id, 0) + 1
        counts[lot.id] = lot_counts

    c = [0.0] * n
    for lot_counts in counts.values():
        for type_id, k in lot_counts.items():
            c[index[type_id]] += k

    A: list[list[float]] = []
    b: list[float] = []
    row_lots: list[str] = []
    row_kinds: list[str] = []

    def add_row(lot_id: str, kind: str, coeffs: dict[str, float], rhs: float) -> None:
        row = [0.0] * n
        for type_id, value in coeffs.items():
            row[index[type_id]] += value
        A.append(row)
        b.append(rhs)
        row_lots.append(lot_id)
        row_kinds.append(kind)

    type_map = {bt.id: bt for bt in types}

    for lot in project.lots:
        add_row(lot.id, ROW_FAR, dict(counts[lot.id]), lot.area * lot.k_max)

    for lot in project.lots:
        if lot.max_population <= 0:
            continue
        coeffs = {
            tid: k * population_coefficient(type_map[tid], project_settings)
            for tid, k in counts[lot.id].items()
        }
        add_row(lot.id, ROW_POPULATION, coeffs, lot.max_population)

    if include_density:
        for lot in project.lots:
            if not counts[lot.id]:
                continue
            coeffs = {
                tid: (k / type_map[tid].total_floors if type_map[tid].total_floors > 0 else 0.0)
                for tid, k in counts[lot.id].items()
            }
            add_row(lot.id, ROW_DENSITY, coeffs, lot.area * lot.density_max)

    current = {bt.id: bt.total_gfa for bt in types}
    lb: list[float] = []
    ub: list[float] = []
    user_min: dict[str, float] = {}
    for bt in types:
        lower, upper, user_lower = _variable_bounds(
            bt, current[bt.id], bounds_min, bounds_max, bounds_range,
        )
        lb.append(lower)
        ub.append(upper)
        if user_lower is not None:
            user_min[bt.id] = user_lower

    return GFAProblem(
        type_ids=type_ids,
        c=c,
        A=A,
        b=b,
        lb=lb,
        ub=ub,
        row_lots=row_lots,
        row_kinds=row_kinds,
        counts=counts,
        current=current,
        user_min=user_min,
    )


# ──────────────────────────────────────────────────────────────────
# SOLVE + DECODE
# ──────────────────────────────────────────────────────────────────

def solve_gfa(
    project: Project,
    bounds_min: Optional[dict[str, float]] = None,
    bounds_max: Optional[dict[str, float]] = None,
    bounds_range: Optional[float] = None,
    include_density: bool = True,
    problem: Optional[GFAProblem] = None,
) -> GFASolution:
    """Formulate (unless ``problem`` is given), solve and decode."""
    if problem is None:
        problem = formulate_gfa_problem(
            project, bounds_min, bounds_max, bounds_range, include_density,
        )

    result = solve_lp(
        problem.c, problem.A, problem.b, problem.lb, problem.ub,
        max_iterations=engine_settings.simplex_max_iterations,
    )
    if not isinstance(result, LPOptimal):
        logger.info("GFA LP not solved: %s (%s)", result.status, result.reason)
        return GFASolution(status=result.status, reason=result.reason)

    return decode_solution(project, problem, result)


def decode_solution(project: Project, problem: GFAProblem, result: LPOptimal) -> GFASolution:
    """Map raw LP variables and slacks back onto types and lots."""
    solution = dict(zip(problem.type_ids, result.x))
    type_map = {bt.id: bt for bt in project.building_types}

    typical_areas = {}
    for type_id, gfa in solution.items():
        floors = type_map[type_id].total_floors
        typical_areas[type_id] = gfa / floors if floors > 0 else type_map[type_id].typical_area

    binding_rows = set(result.binding_constraints)
    far_binding = {
        problem.row_lots[i] for i in binding_rows if problem.row_kinds[i] == ROW_FAR
    }

    lot_details = []
    for lot in project.lots:
        lot_counts = problem.counts.get(lot.id, {})
        buildings = []
        total = 0.0
        for type_id, k in lot_counts.items():
            for _ in range(k):
                buildings.append({"type_id": type_id, "total_gfa": solution[type_id]})
            total += k * solution[type_id]
        k_achieved = total / lot.area if lot.area > 0 else 0.0
        max_gfa = lot.area * lot.k_max
        lot_details.append(LPLotDetail(
            lot_id=lot.id,
            lot_area=lot.area,
            k_max=lot.k_max,
            total_gfa=total,
            k_achieved=k_achieved,
            utilization=k_achieved / lot.k_max if lot.k_max > 0 else 0.0,
            max_gfa=max_gfa,
            remaining_gfa=max_gfa - total,
            building_count=len(buildings),
            buildings=buildings,
            is_binding=lot.id in far_binding,
        ))

    def binding_of(kind: str) -> list[str]:
        return [problem.row_lots[i] for i in problem.rows_of(kind) if i in binding_rows]

    return GFASolution(
        status="optimal",
        solution=solution,
        typical_areas=typical_areas,
        total_gfa=result.objective_value,
        lot_details=lot_details,
        binding_lots=binding_of(ROW_FAR),
        binding_population_lots=binding_of(ROW_POPULATION),
        binding_density_lots=binding_of(ROW_DENSITY),
    )


def solution_types(project: Project, gfa: GFASolution) -> list[BuildingType]:
    """Building type table with each type's typical area set from the LP."""
    return [
        bt.model_copy(update={"typical_area": gfa.typical_areas.get(bt.id, bt.typical_area)})
        for bt in project.building_types
    ]


# ──────────────────────────────────────────────────────────────────
# SENSITIVITY
# ──────────────────────────────────────────────────────────────────

def compute_sensitivity(gfa: GFASolution, problem: GFAProblem) -> dict[str, SensitivityRange]:
    """How far each S_t could move with every other type held at its optimum.

    max S_t = min over rows containing t of (b_i − Σ_{j≠t} a_ij S_j) / a_it,
    which for a FAR row is (lot capacity − other types' GFA) / count of t.
    """
    if not gfa.is_optimal:
        return {}

    x = [gfa.solution[tid] for tid in problem.type_ids]
    ranges: dict[str, SensitivityRange] = {}

    for t, type_id in enumerate(problem.type_ids):
        best: Optional[float] = None
        limiting_lot = limiting_kind = None
        for i, row in enumerate(problem.A):
            coeff = row[t]
            if coeff <= 0:
                continue
            others = sum(a * x[j] for j, a in enumerate(row) if j != t)
            limit = (problem.b[i] - others) / coeff
            if best is None or limit < best:
                best = limit
                limiting_lot = problem.row_lots[i]
                limiting_kind = problem.row_kinds[i]

        ranges[type_id] = SensitivityRange(
            type_id=type_id,
            min=problem.user_min.get(type_id, 0.0),
            max=best,
            optimal=gfa.solution[type_id],
            limiting_lot=limiting_lot,
            limiting_constraint=limiting_kind,
        )

    return ranges
