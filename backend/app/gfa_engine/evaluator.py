"""
Metric evaluator: configuration → per-lot and project-wide metrics.

For every lot with an assignment:
  - resolve the assigned building types (unknown ids are skipped)
  - split each building's floor area into counted / deduction GFA
  - sum to lot totals and compute achieved FAR (K), density (MĐXD)
    and population
  - classify the lot: unassigned / low / good / optimal / over

Two GFA modes share one code path:
  simplified:   counted = typical_area × floors × (1 − deduction_rate)
  floor_split:  deduction floors = ceil(floors × deduction_rate),
                counted = typical_area × (commercial + residential floors)

Every instance of a building type uses the type's single typical area.
The evaluator never scales areas; it only measures.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

from app.models.schemas import (
    Assignment, BuildingType, GFAMode, Lot, Project, ProjectSettings,
)
from app.gfa_engine.legal_rules import (
    STATUS_OVER, STATUS_UNASSIGNED, classify_utilization, exceeds,
)

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────
# DATA CLASSES
# ──────────────────────────────────────────────────────────────────

@dataclass
class BuildingDetail:
    """Floor-area breakdown of one building instance on a lot."""
    type_id: str
    label: str
    typical_area: float
    total_floors: int
    commercial_floors: int
    residential_floors: int
    counted_floors: float
    deduction_floors: float
    commercial_gfa: float
    residential_gfa: float
    counted_gfa: float  # counts toward K
    deduction_gfa: float  # technical / fire / roof floors, excluded from K
    total_gfa: float  # counted + deduction = what gets built
    population: float

    def to_dict(self) -> dict:
        return {
            "type_id": self.type_id,
            "label": self.label,
            "typical_area": self.typical_area,
            "total_floors": self.total_floors,
            "commercial_floors": self.commercial_floors,
            "residential_floors": self.residential_floors,
            "counted_floors": self.counted_floors,
            "deduction_floors": self.deduction_floors,
            "commercial_gfa": self.commercial_gfa,
            "residential_gfa": self.residential_gfa,
            "counted_gfa": self.counted_gfa,
            "deduction_gfa": self.deduction_gfa,
            "total_gfa": self.total_gfa,
            "population": self.population,
        }


@dataclass
class LotResult:
    """Achieved metrics and compliance status of one lot."""
    lot: Lot
    buildings: list[BuildingDetail]
    status: str
    footprint: float = 0
    total_counted_gfa: float = 0
    total_actual_gfa: float = 0
    k_achieved: float = 0
    density_achieved: float = 0
    population: float = 0
    utilization_rate: float = 0
    is_over_k: bool = False
    is_over_density: bool = False
    is_over_population: bool = False
    is_over_floors: bool = False
    binding_constraint: Optional[str] = None  # "far", "density", "population"

    @property
    def lot_id(self) -> str:
        return self.lot.id

    @property
    def building_count(self) -> int:
        return len(self.buildings)

    @property
    def k_max(self) -> float:
        return self.lot.k_max

    @property
    def density_max(self) -> float:
        return self.lot.density_max

    @property
    def max_allowable_gfa(self) -> float:
        return self.lot.area * self.lot.k_max

    @property
    def remaining_gfa(self) -> float:
        return self.max_allowable_gfa - self.total_counted_gfa

    @property
    def remaining_k_capacity(self) -> float:
        return self.lot.k_max - self.k_achieved

    @property
    def remaining_density_capacity(self) -> float:
        return self.lot.density_max - self.density_achieved

    @property
    def is_over(self) -> bool:
        return self.status == STATUS_OVER

    def to_dict(self) -> dict:
        return {
            "lot": self.lot.model_dump(),
            "lot_id": self.lot_id,
            "buildings": [b.to_dict() for b in self.buildings],
            "building_count": self.building_count,
            "status": self.status,
            "footprint": self.footprint,
            "total_counted_gfa": self.total_counted_gfa,
            "total_actual_gfa": self.total_actual_gfa,
            "k_achieved": self.k_achieved,
            "k_max": self.k_max,
            "density_achieved": self.density_achieved,
            "density_max": self.density_max,
            "population": self.population,
            "max_population": self.lot.max_population,
            "utilization_rate": self.utilization_rate,
            "is_over_k": self.is_over_k,
            "is_over_density": self.is_over_density,
            "is_over_population": self.is_over_population,
            "is_over_floors": self.is_over_floors,
            "binding_constraint": self.binding_constraint,
            "max_allowable_gfa": self.max_allowable_gfa,
            "remaining_gfa": self.remaining_gfa,
            "remaining_k_capacity": self.remaining_k_capacity,
            "remaining_density_capacity": self.remaining_density_capacity,
        }


@dataclass
class TypeAggregation:
    """Totals for one building type across every lot that uses it."""
    type_id: str
    label: str
    typical_area: float
    count: int = 0
    total_counted_gfa: float = 0
    total_actual_gfa: float = 0
    lots: list[str] = field(default_factory=list)
    instances: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type_id": self.type_id,
            "label": self.label,
            "typical_area": self.typical_area,
            "count": self.count,
            "total_counted_gfa": self.total_counted_gfa,
            "total_actual_gfa": self.total_actual_gfa,
            "lots": list(self.lots),
            "instances": [dict(i) for i in self.instances],
        }


@dataclass
class ProjectTotals:
    """Project-wide aggregates and the combined-FAR check."""
    total_land_area: float
    total_counted_gfa: float
    total_actual_gfa: float
    total_buildings: int
    total_lots: int
    avg_k: float
    avg_utilization: float
    total_population: float
    combined_far: float
    max_combined_far: float
    combined_far_compliant: bool

    def to_dict(self) -> dict:
        return {
            "total_land_area": self.total_land_area,
            "total_counted_gfa": self.total_counted_gfa,
            "total_actual_gfa": self.total_actual_gfa,
            "total_buildings": self.total_buildings,
            "total_lots": self.total_lots,
            "avg_k": self.avg_k,
            "avg_utilization": self.avg_utilization,
            "total_population": self.total_population,
            "combined_far": self.combined_far,
            "max_combined_far": self.max_combined_far,
            "combined_far_compliant": self.combined_far_compliant,
        }


@dataclass
class Evaluation:
    """Full evaluator output."""
    lot_results: list[LotResult]
    type_aggregation: dict[str, TypeAggregation]
    project_total: ProjectTotals

    def lot_result(self, lot_id: str) -> Optional[LotResult]:
        for lr in self.lot_results:
            if lr.lot.id == lot_id:
                return lr
        return None

    @property
    def all_lots_valid(self) -> bool:
        return not any(lr.is_over for lr in self.lot_results)

    @property
    def is_valid(self) -> bool:
        """No lot over a cap and the combined-FAR ceiling holds."""
        return self.all_lots_valid and self.project_total.combined_far_compliant

    def to_dict(self) -> dict:
        return {
            "lot_results": [lr.to_dict() for lr in self.lot_results],
            "type_aggregation": {
                k: v.to_dict() for k, v in self.type_aggregation.items()
            },
            "project_total": self.project_total.to_dict(),
            "is_valid": self.is_valid,
        }


# ──────────────────────────────────────────────────────────────────
# SHARED HELPERS
# ──────────────────────────────────────────────────────────────────

def group_assignments(assignments: list[Assignment]) -> dict[str, list[str]]:
    """Lot id → type ids placed on it (multiple assignment rows concatenate)."""
    grouped: dict[str, list[str]] = {}
    for a in assignments:
        grouped.setdefault(a.lot_id, []).extend(a.buildings)
    return grouped


def split_deduction_floors(bt: BuildingType, settings: ProjectSettings) -> int:
    """Whole floors excluded from K in floor_split mode."""
    if bt.total_floors <= 0:
        return 0
    # 1e-9 keeps float noise (20 × 0.05 = 1.0000000000000002) from adding a floor
    return math.ceil(bt.total_floors * settings.deduction_rate - 1e-9)


def commercial_floors_for(bt: BuildingType, settings: ProjectSettings) -> int:
    """Commercial floors, capped at the floors that count toward K."""
    commercial = bt.commercial_floors
    if commercial is None:
        commercial = settings.commercial_floors
    limit = bt.total_floors
    if settings.gfa_mode == GFAMode.FLOOR_SPLIT:
        limit -= split_deduction_floors(bt, settings)
    return max(0, min(commercial, limit))


def residential_floors_for(bt: BuildingType, settings: ProjectSettings) -> int:
    return bt.total_floors - commercial_floors_for(bt, settings)


def population_coefficient(bt: BuildingType, settings: ProjectSettings) -> float:
    """Residents per m² of one building's total GFA.

    population = total_gfa × residential / total floors × net ratio / m² per person
    """
    if bt.total_floors <= 0:
        return 0.0
    fraction = residential_floors_for(bt, settings) / bt.total_floors
    return fraction * settings.net_area_ratio / settings.area_per_person


def building_detail(bt: BuildingType, settings: ProjectSettings) -> BuildingDetail:
    """Floor-area split of one building of type ``bt`` at its typical area."""
    area = bt.typical_area
    floors = bt.total_floors
    commercial = commercial_floors_for(bt, settings)
    rate = settings.deduction_rate

    if settings.gfa_mode == GFAMode.FLOOR_SPLIT:
        deduction_floors = float(split_deduction_floors(bt, settings))
        counted_floors = floors - deduction_floors
        commercial_gfa = area * commercial
        residential_gfa = area * (counted_floors - commercial)
        counted_gfa = commercial_gfa + residential_gfa
        deduction_gfa = area * deduction_floors
        total_gfa = counted_gfa + deduction_gfa
    else:
        deduction_floors = floors * rate
        counted_floors = floors - deduction_floors
        total_gfa = area * floors
        counted_gfa = total_gfa * (1 - rate)
        deduction_gfa = total_gfa - counted_gfa
        commercial_gfa = counted_gfa * commercial / floors if floors > 0 else 0.0
        residential_gfa = counted_gfa - commercial_gfa

    residential = residential_floors_for(bt, settings)
    population = (
        area * residential * settings.net_area_ratio / settings.area_per_person
    )

    return BuildingDetail(
        type_id=bt.id,
        label=bt.label or bt.id,
        typical_area=area,
        total_floors=floors,
        commercial_floors=commercial,
        residential_floors=residential,
        counted_floors=counted_floors,
        deduction_floors=deduction_floors,
        commercial_gfa=commercial_gfa,
        residential_gfa=residential_gfa,
        counted_gfa=counted_gfa,
        deduction_gfa=deduction_gfa,
        total_gfa=total_gfa,
        population=population,
    )


# ──────────────────────────────────────────────────────────────────
# LOT EVALUATION
# ──────────────────────────────────────────────────────────────────

def _ratio(value: float, cap: float) -> float:
    return value / cap if cap > 0 else 0.0


def empty_lot_result(lot: Lot) -> LotResult:
    return LotResult(lot=lot, buildings=[], status=STATUS_UNASSIGNED)


def evaluate_lot(
    lot: Lot,
    types: list[BuildingType],
    settings: ProjectSettings,
) -> LotResult:
    """Metrics for one lot holding the given (already resolved) buildings."""
    if not types:
        return empty_lot_result(lot)

    buildings = [building_detail(bt, settings) for bt in types]

    footprint = sum(b.typical_area for b in buildings)
    counted = sum(b.counted_gfa for b in buildings)
    actual = sum(b.total_gfa for b in buildings)
    population = sum(b.population for b in buildings)

    if lot.area > 0:
        k_achieved = counted / lot.area
        density = footprint / lot.area
    else:
        # No land: nothing can be placed, any floor area is over the cap
        k_achieved = 0.0
        density = 0.0

    utilization = _ratio(k_achieved, lot.k_max)

    no_land = lot.area <= 0 and counted > 0
    is_over_k = no_land or exceeds(k_achieved, lot.k_max)
    is_over_density = no_land or exceeds(density, lot.density_max)
    is_over_population = (
        lot.max_population > 0 and exceeds(population, lot.max_population)
    )
    is_over_floors = lot.max_floors > 0 and any(
        b.total_floors > lot.max_floors for b in buildings
    )

    pressures = {
        "far": utilization,
        "density": _ratio(density, lot.density_max),
    }
    if lot.max_population > 0:
        pressures["population"] = _ratio(population, lot.max_population)
    binding = max(pressures, key=pressures.get)

    if is_over_k or is_over_density or is_over_population or is_over_floors:
        status = STATUS_OVER
    else:
        status = classify_utilization(utilization, settings.k_target_min)

    return LotResult(
        lot=lot,
        buildings=buildings,
        status=status,
        footprint=footprint,
        total_counted_gfa=counted,
        total_actual_gfa=actual,
        k_achieved=k_achieved,
        density_achieved=density,
        population=population,
        utilization_rate=utilization,
        is_over_k=is_over_k,
        is_over_density=is_over_density,
        is_over_population=is_over_population,
        is_over_floors=is_over_floors,
        binding_constraint=binding,
    )


# ──────────────────────────────────────────────────────────────────
# PROJECT EVALUATION
# ──────────────────────────────────────────────────────────────────

def evaluate_configuration(
    lots: list[Lot],
    building_types: list[BuildingType],
    assignments: list[Assignment],
    settings: ProjectSettings,
) -> Evaluation:
    """Evaluate lots × types × assignments under the given settings.

    Unknown type ids in an assignment are skipped; assignments pointing at
    unknown lots are ignored (``validate_project`` reports both).
    """
    type_map = {bt.id: bt for bt in building_types}
    placed = group_assignments(assignments)

    lot_results: list[LotResult] = []
    for lot in lots:
        resolved = []
        for type_id in placed.get(lot.id, []):
            bt = type_map.get(type_id)
            if bt is None:
                logger.debug("Lot %s: skipping unknown building type %s", lot.id, type_id)
                continue
            resolved.append(bt)
        lot_results.append(evaluate_lot(lot, resolved, settings))

    type_aggregation = _aggregate_types(building_types, lot_results)
    project_total = _project_totals(lots, lot_results, settings)

    return Evaluation(
        lot_results=lot_results,
        type_aggregation=type_aggregation,
        project_total=project_total,
    )


def evaluate(project: Project) -> Evaluation:
    """Evaluate a full project configuration."""
    return evaluate_configuration(
        project.lots, project.building_types, project.assignments, project.settings,
    )


def _aggregate_types(
    building_types: list[BuildingType],
    lot_results: list[LotResult],
) -> dict[str, TypeAggregation]:
    aggregation = {
        bt.id: TypeAggregation(
            type_id=bt.id, label=bt.label or bt.id, typical_area=bt.typical_area,
        )
        for bt in building_types
    }
    for lr in lot_results:
        for b in lr.buildings:
            agg = aggregation.get(b.type_id)
            if agg is None:
                continue
            agg.count += 1
            agg.total_counted_gfa += b.counted_gfa
            agg.total_actual_gfa += b.total_gfa
            if lr.lot.id not in agg.lots:
                agg.lots.append(lr.lot.id)
            agg.instances.append({
                "lot_id": lr.lot.id,
                "typical_area": b.typical_area,
                "counted_gfa": b.counted_gfa,
                "total_gfa": b.total_gfa,
            })
    return aggregation


def _project_totals(
    lots: list[Lot],
    lot_results: list[LotResult],
    settings: ProjectSettings,
) -> ProjectTotals:
    total_land = sum(lot.area for lot in lots)
    total_counted = sum(lr.total_counted_gfa for lr in lot_results)
    total_actual = sum(lr.total_actual_gfa for lr in lot_results)
    active = [lr for lr in lot_results if lr.buildings]

    avg_k = total_counted / total_land if total_land > 0 else 0.0
    avg_utilization = (
        sum(lr.utilization_rate for lr in active) / len(active) if active else 0.0
    )

    return ProjectTotals(
        total_land_area=total_land,
        total_counted_gfa=total_counted,
        total_actual_gfa=total_actual,
        total_buildings=sum(lr.building_count for lr in lot_results),
        total_lots=len(lots),
        avg_k=avg_k,
        avg_utilization=avg_utilization,
        total_population=sum(lr.population for lr in lot_results),
        combined_far=avg_k,
        max_combined_far=settings.max_combined_far,
        combined_far_compliant=not exceeds(avg_k, settings.max_combined_far),
    )
