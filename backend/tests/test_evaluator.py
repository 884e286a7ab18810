"""Tests for the metric evaluator.

Covers both GFA modes, status classification, hard-constraint flags,
unknown references, zero guards, aggregation and project totals.
"""

from __future__ import annotations

import pytest

from app.models.schemas import (
    Assignment, BuildingType, GFAMode, Lot, Project, ProjectSettings,
)
from app.gfa_engine.evaluator import (
    building_detail, evaluate, evaluate_configuration, population_coefficient,
)
from app.gfa_engine.sample_project import default_project


# ──────────────────────────────────────────────────────────────────
# HELPERS
# ──────────────────────────────────────────────────────────────────

def _make_lot(
    lot_id: str = "A",
    area: float = 1000,
    k_max: float = 5.0,
    density_max: float = 0.4,
    max_floors: int = 0,
    max_population: float = 0,
) -> Lot:
    return Lot(
        id=lot_id, name=f"Lot {lot_id}", area=area, k_max=k_max,
        density_max=density_max, max_floors=max_floors, max_population=max_population,
    )


def _make_type(
    type_id: str = "T",
    typical_area: float = 150,
    total_floors: int = 20,
    commercial_floors: int | None = None,
) -> BuildingType:
    return BuildingType(
        id=type_id, label=type_id, typical_area=typical_area,
        total_floors=total_floors, commercial_floors=commercial_floors,
    )


def _make_project(
    lots: list[Lot],
    types: list[BuildingType],
    placement: dict[str, list[str]],
    **settings,
) -> Project:
    settings.setdefault("deduction_rate", 0.0)
    return Project(
        lots=lots,
        building_types=types,
        assignments=[Assignment(lot_id=k, buildings=v) for k, v in placement.items()],
        settings=ProjectSettings(**settings),
    )


def _single(lot: Lot | None = None, bt: BuildingType | None = None, **settings) -> Project:
    return _make_project([lot or _make_lot()], [bt or _make_type()], {"A": ["T"]}, **settings)


# ──────────────────────────────────────────────────────────────────
# SINGLE LOT METRICS
# ──────────────────────────────────────────────────────────────────

class TestSingleLot:
    """One lot, one building: FAR = 150 × 20 / 1000 = 3.0, density 0.15."""

    def test_far_and_density(self):
        lr = evaluate(_single()).lot_results[0]
        assert lr.k_achieved == pytest.approx(3.0)
        assert lr.density_achieved == pytest.approx(0.15)
        assert lr.total_counted_gfa == pytest.approx(3000)
        assert lr.total_actual_gfa == pytest.approx(3000)
        assert lr.utilization_rate == pytest.approx(0.6)

    def test_low_status_below_80_percent(self):
        lr = evaluate(_single()).lot_results[0]
        assert lr.status == "low"

    def test_good_status(self):
        """Utilization 3.0 / 3.6 = 0.83 → good."""
        lr = evaluate(_single(_make_lot(k_max=3.6))).lot_results[0]
        assert lr.status == "good"

    def test_optimal_status(self):
        """Utilization 3.0 / 3.2 = 0.94 ≥ 0.90 → optimal."""
        lr = evaluate(_single(_make_lot(k_max=3.2))).lot_results[0]
        assert lr.status == "optimal"

    def test_k_target_min_is_configurable(self):
        lr = evaluate(_single(k_target_min=0.5)).lot_results[0]
        assert lr.status == "optimal"

    def test_remaining_capacity(self):
        lr = evaluate(_single()).lot_results[0]
        assert lr.max_allowable_gfa == pytest.approx(5000)
        assert lr.remaining_gfa == pytest.approx(2000)
        assert lr.remaining_k_capacity == pytest.approx(2.0)
        assert lr.remaining_density_capacity == pytest.approx(0.25)


class TestGFAModes:
    """Simplified deduction vs explicit floor split."""

    def test_simplified_deduction(self):
        lr = evaluate(_single(deduction_rate=0.03)).lot_results[0]
        b = lr.buildings[0]
        assert b.total_gfa == pytest.approx(3000)
        assert b.counted_gfa == pytest.approx(2910)
        assert b.deduction_gfa == pytest.approx(90)
        assert lr.k_achieved == pytest.approx(2.91)

    def test_simplified_commercial_share(self):
        b = evaluate(_single(deduction_rate=0.03)).lot_results[0].buildings[0]
        assert b.commercial_gfa == pytest.approx(2910 * 2 / 20)
        assert b.commercial_gfa + b.residential_gfa == pytest.approx(b.counted_gfa)

    def test_floor_split(self):
        """20 floors, ceil(20 × 0.03) = 1 deduction floor, 2 commercial, 17 residential."""
        project = _single(deduction_rate=0.03, gfa_mode=GFAMode.FLOOR_SPLIT)
        b = evaluate(project).lot_results[0].buildings[0]
        assert b.deduction_floors == 1
        assert b.counted_floors == 19
        assert b.commercial_gfa == pytest.approx(300)
        assert b.residential_gfa == pytest.approx(2550)
        assert b.counted_gfa == pytest.approx(2850)
        assert b.deduction_gfa == pytest.approx(150)
        assert b.total_gfa == pytest.approx(3000)

    def test_floor_split_exact_multiple_adds_no_extra_floor(self):
        """20 × 0.05 = 1 floor, not 2, despite float noise."""
        project = _single(deduction_rate=0.05, gfa_mode=GFAMode.FLOOR_SPLIT)
        b = evaluate(project).lot_results[0].buildings[0]
        assert b.deduction_floors == 1

    def test_modes_agree_without_deduction(self):
        simple = evaluate(_single()).lot_results[0]
        split = evaluate(_single(gfa_mode=GFAMode.FLOOR_SPLIT)).lot_results[0]
        assert simple.total_counted_gfa == pytest.approx(split.total_counted_gfa)

    def test_type_commercial_floors_override_settings(self):
        bt = _make_type(commercial_floors=5)
        b = building_detail(bt, ProjectSettings(deduction_rate=0.0))
        assert b.commercial_floors == 5
        assert b.residential_floors == 15

    def test_floor_split_commercial_capped_like_lp_row(self):
        """10 commercial floors on a 10-floor type: 1 deduction floor leaves 9 counted."""
        bt = _make_type(total_floors=10, commercial_floors=10)
        settings = ProjectSettings(deduction_rate=0.03, gfa_mode=GFAMode.FLOOR_SPLIT)
        b = building_detail(bt, settings)
        assert b.commercial_floors == 9
        assert b.residential_floors == 1
        assert b.residential_gfa == 0
        assert b.population == pytest.approx(
            population_coefficient(bt, settings) * b.total_gfa
        )


class TestPopulation:
    """population = area × residential floors × net ratio / m² per person."""

    def test_population_value(self):
        lr = evaluate(_single()).lot_results[0]
        assert lr.population == pytest.approx(150 * 18 * 0.9 / 32)

    def test_population_cap_exceeded(self):
        lr = evaluate(_single(_make_lot(max_population=50))).lot_results[0]
        assert lr.is_over_population
        assert lr.status == "over"
        assert lr.binding_constraint == "population"

    def test_population_cap_respected(self):
        lr = evaluate(_single(_make_lot(max_population=100))).lot_results[0]
        assert not lr.is_over_population
        assert lr.status == "low"


# ──────────────────────────────────────────────────────────────────
# HARD CONSTRAINTS
# ──────────────────────────────────────────────────────────────────

class TestOverStatus:

    def test_over_far(self):
        lr = evaluate(_single(_make_lot(k_max=2.0))).lot_results[0]
        assert lr.is_over_k
        assert lr.status == "over"
        assert lr.binding_constraint == "far"

    def test_over_density(self):
        lr = evaluate(_single(_make_lot(density_max=0.1))).lot_results[0]
        assert lr.is_over_density
        assert not lr.is_over_k
        assert lr.status == "over"

    def test_over_floors(self):
        lr = evaluate(_single(_make_lot(max_floors=10))).lot_results[0]
        assert lr.is_over_floors
        assert lr.status == "over"

    def test_exactly_at_cap_is_not_over(self):
        lr = evaluate(_single(_make_lot(k_max=3.0))).lot_results[0]
        assert not lr.is_over_k
        assert lr.status == "optimal"

    def test_binding_constraint_density(self):
        """FAR utilization 0.3, density utilization 0.75 → density binds."""
        lr = evaluate(_single(_make_lot(k_max=10, density_max=0.2))).lot_results[0]
        assert lr.binding_constraint == "density"


# ──────────────────────────────────────────────────────────────────
# EDGE CASES
# ──────────────────────────────────────────────────────────────────

class TestEdgeCases:

    def test_unassigned_lot(self):
        project = _make_project([_make_lot("A"), _make_lot("B")], [_make_type()], {"A": ["T"]})
        lr = evaluate(project).lot_result("B")
        assert lr.status == "unassigned"
        assert lr.building_count == 0
        assert lr.k_achieved == 0
        assert lr.binding_constraint is None

    def test_empty_assignment(self):
        project = _make_project([_make_lot()], [_make_type()], {"A": []})
        assert evaluate(project).lot_results[0].status == "unassigned"

    def test_unknown_type_skipped(self):
        project = _make_project([_make_lot()], [_make_type()], {"A": ["T", "ghost"]})
        lr = evaluate(project).lot_results[0]
        assert lr.building_count == 1
        assert lr.k_achieved == pytest.approx(3.0)

    def test_only_unknown_types_is_unassigned(self):
        project = _make_project([_make_lot()], [_make_type()], {"A": ["ghost"]})
        assert evaluate(project).lot_results[0].status == "unassigned"

    def test_unknown_lot_in_assignment_ignored(self):
        project = _make_project([_make_lot()], [_make_type()], {"A": ["T"], "Z": ["T"]})
        result = evaluate(project)
        assert len(result.lot_results) == 1
        assert result.project_total.total_buildings == 1

    def test_zero_area_lot(self):
        lr = evaluate(_single(_make_lot(area=0))).lot_results[0]
        assert lr.k_achieved == 0
        assert lr.density_achieved == 0
        assert lr.status == "over"

    def test_zero_floor_type(self):
        lr = evaluate(_single(bt=_make_type(total_floors=0))).lot_results[0]
        assert lr.total_counted_gfa == 0
        assert lr.status == "low"

    def test_zero_k_max_gives_zero_utilization(self):
        lr = evaluate(_single(_make_lot(k_max=0))).lot_results[0]
        assert lr.utilization_rate == 0
        assert lr.status == "over"

    def test_split_assignments_are_combined(self):
        project = Project(
            lots=[_make_lot()],
            building_types=[_make_type()],
            assignments=[
                Assignment(lot_id="A", buildings=["T"]),
                Assignment(lot_id="A", buildings=["T"]),
            ],
            settings=ProjectSettings(deduction_rate=0.0),
        )
        assert evaluate(project).lot_results[0].building_count == 2


# ──────────────────────────────────────────────────────────────────
# AGGREGATION
# ──────────────────────────────────────────────────────────────────

class TestAggregation:

    def _two_lot_project(self, **settings) -> Project:
        return _make_project(
            [_make_lot("A", area=1000), _make_lot("B", area=2000)],
            [_make_type("T", 150), _make_type("U", 100)],
            {"A": ["T", "U"], "B": ["T", "T"]},
            **settings,
        )

    def test_type_shared_area_identical_in_every_lot(self):
        result = evaluate(self._two_lot_project())
        areas = {
            b.typical_area
            for lr in result.lot_results for b in lr.buildings if b.type_id == "T"
        }
        assert areas == {150}

    def test_type_aggregation(self):
        agg = evaluate(self._two_lot_project()).type_aggregation
        assert agg["T"].count == 3
        assert agg["T"].lots == ["A", "B"]
        assert agg["T"].total_counted_gfa == pytest.approx(3 * 3000)
        assert len(agg["T"].instances) == 3
        assert agg["U"].count == 1

    def test_project_totals(self):
        totals = evaluate(self._two_lot_project()).project_total
        assert totals.total_land_area == 3000
        assert totals.total_counted_gfa == pytest.approx(3000 + 2000 + 6000)
        assert totals.avg_k == pytest.approx(11000 / 3000)
        assert totals.total_buildings == 4
        assert totals.total_lots == 2
        assert totals.combined_far_compliant

    def test_average_utilization_over_assigned_lots(self):
        totals = evaluate(self._two_lot_project()).project_total
        # A: 5000 / 1000 / 5 = 1.0, B: 6000 / 2000 / 5 = 0.6
        assert totals.avg_utilization == pytest.approx(0.8)

    def test_combined_far_ceiling(self):
        result = evaluate(self._two_lot_project(max_combined_far=3.0))
        assert not result.project_total.combined_far_compliant
        assert result.all_lots_valid
        assert not result.is_valid

    def test_idempotent(self):
        project = self._two_lot_project(deduction_rate=0.03)
        assert evaluate(project).to_dict() == evaluate(project).to_dict()

    def test_evaluate_configuration_matches_evaluate(self):
        project = self._two_lot_project()
        direct = evaluate_configuration(
            project.lots, project.building_types, project.assignments, project.settings,
        )
        assert direct.to_dict() == evaluate(project).to_dict()

    def test_input_not_mutated(self):
        project = self._two_lot_project()
        before = project.model_dump()
        evaluate(project)
        assert project.model_dump() == before


class TestSampleProject:
    """The bundled sample: CC1 over its FAR cap, the rest optimal."""

    def test_statuses(self):
        result = evaluate(default_project())
        statuses = {lr.lot_id: lr.status for lr in result.lot_results}
        assert statuses == {"CC1": "over", "CC2": "optimal", "CC3": "optimal", "CC4": "optimal"}

    def test_cc1_far(self):
        lr = evaluate(default_project()).lot_result("CC1")
        expected = (2 * 1472.67 + 1685.84) * 30 * 0.97 / 24474
        assert lr.k_achieved == pytest.approx(expected)
        assert lr.is_over_k

    def test_combined_far_compliant(self):
        assert evaluate(default_project()).project_total.combined_far_compliant
