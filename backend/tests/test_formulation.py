"""Tests for the GFA LP formulation, decoding and sensitivity ranges.

Most tests use two lots sharing type T:

    A (1000 m², K 3.0): [T]        cap 3000
    B (1000 m², K 5.0): [T, U]     cap 5000

T and U are 200 m² × 10 floors (S = 2000), bounds ±50% → [1000, 3000].
The LP optimum is T = 3000 (A binds), U = 2000 (B binds), objective 8000.
"""

from __future__ import annotations

import numpy as np
import pytest

from app.models.schemas import Assignment, BuildingType, Lot, Project, ProjectSettings
from app.gfa_engine.formulation import (
    ROW_DENSITY, ROW_FAR, ROW_POPULATION,
    compute_sensitivity, formulate_gfa_problem, solution_types, solve_gfa,
)
from app.gfa_engine.sample_project import default_project


def _make_lot(lot_id, area=1000, k_max=5.0, density_max=1.0, max_population=0) -> Lot:
    return Lot(
        id=lot_id, name=lot_id, area=area, k_max=k_max,
        density_max=density_max, max_population=max_population,
    )


def _make_type(type_id, typical_area=200, total_floors=10, **kw) -> BuildingType:
    return BuildingType(id=type_id, typical_area=typical_area, total_floors=total_floors, **kw)


def _make_project(lots, types, placement) -> Project:
    return Project(
        lots=lots,
        building_types=types,
        assignments=[Assignment(lot_id=k, buildings=v) for k, v in placement.items()],
        settings=ProjectSettings(),
    )


def _shared_project(k_max_a: float = 3.0, extra_types=()) -> Project:
    return _make_project(
        [_make_lot("A", k_max=k_max_a), _make_lot("B", k_max=5.0)],
        [_make_type("T"), _make_type("U"), *extra_types],
        {"A": ["T"], "B": ["T", "U"]},
    )


# ──────────────────────────────────────────────────────────────────
# FORMULATION
# ──────────────────────────────────────────────────────────────────

class TestFormulation:

    def test_objective_counts_instances(self):
        project = _make_project(
            [_make_lot("A"), _make_lot("B")],
            [_make_type("T"), _make_type("U")],
            {"A": ["T", "T", "U"], "B": ["T"]},
        )
        problem = formulate_gfa_problem(project)
        assert problem.type_ids == ["T", "U"]
        assert problem.c == [3, 1]
        assert problem.counts == {"A": {"T": 2, "U": 1}, "B": {"T": 1}}

    def test_row_layout(self):
        project = _make_project(
            [_make_lot("A", max_population=500), _make_lot("B")],
            [_make_type("T")],
            {"A": ["T"], "B": ["T"]},
        )
        problem = formulate_gfa_problem(project)
        assert problem.row_kinds == [ROW_FAR, ROW_FAR, ROW_POPULATION, ROW_DENSITY, ROW_DENSITY]
        assert problem.row_lots == ["A", "B", "A", "A", "B"]
        assert problem.rows_of(ROW_FAR) == [0, 1]

    def test_far_rows(self):
        problem = formulate_gfa_problem(_shared_project())
        assert problem.A[0] == [1, 0]
        assert problem.A[1] == [1, 1]
        assert problem.b[:2] == [3000, 5000]

    def test_density_rows(self):
        problem = formulate_gfa_problem(_shared_project())
        density = problem.rows_of(ROW_DENSITY)
        assert problem.A[density[1]] == pytest.approx([0.1, 0.1])
        assert problem.b[density[1]] == pytest.approx(1000)

    def test_density_rows_optional(self):
        problem = formulate_gfa_problem(_shared_project(), include_density=False)
        assert problem.row_kinds == [ROW_FAR, ROW_FAR]

    def test_unassigned_lot_has_far_row_only(self):
        project = _make_project(
            [_make_lot("A"), _make_lot("B")], [_make_type("T")], {"A": ["T"]},
        )
        problem = formulate_gfa_problem(project)
        assert problem.row_lots == ["A", "B", "A"]
        assert problem.A[1] == [0]

    def test_population_coefficient(self):
        """8 residential of 10 floors × 0.9 / 32 m² per person."""
        project = _make_project(
            [_make_lot("A", max_population=45)], [_make_type("T")], {"A": ["T"]},
        )
        problem = formulate_gfa_problem(project)
        row = problem.rows_of(ROW_POPULATION)[0]
        assert problem.A[row][0] == pytest.approx(0.8 * 0.9 / 32)
        assert problem.b[row] == 45

    def test_default_bounds_from_range(self):
        problem = formulate_gfa_problem(_shared_project())
        assert problem.lb == pytest.approx([1000, 1000])
        assert problem.ub == pytest.approx([3000, 3000])
        assert problem.user_min == {}

    def test_bounds_range_argument(self):
        problem = formulate_gfa_problem(_shared_project(), bounds_range=0.1)
        assert problem.lb == pytest.approx([1800, 1800])
        assert problem.ub == pytest.approx([2200, 2200])

    def test_bound_precedence(self):
        """Explicit bounds beat type min/max area, which beat the range."""
        project = _make_project(
            [_make_lot("A")],
            [_make_type("T", min_area=150, max_area=250), _make_type("U")],
            {"A": ["T", "U"]},
        )
        problem = formulate_gfa_problem(project)
        assert problem.lb[0] == pytest.approx(1500)
        assert problem.ub[0] == pytest.approx(2500)
        assert problem.user_min == {"T": 1500}

        problem = formulate_gfa_problem(project, bounds_min={"T": 1800}, bounds_max={"U": 2100})
        assert problem.lb[0] == 1800
        assert problem.ub[1] == 2100


# ──────────────────────────────────────────────────────────────────
# SOLVE
# ──────────────────────────────────────────────────────────────────

class TestSolve:

    def test_shared_type_optimum(self):
        gfa = solve_gfa(_shared_project())
        assert gfa.is_optimal
        assert gfa.total_gfa == pytest.approx(8000)
        assert gfa.solution["T"] == pytest.approx(3000)
        assert gfa.solution["U"] == pytest.approx(2000)
        assert gfa.typical_areas["T"] == pytest.approx(300)
        assert sorted(gfa.binding_lots) == ["A", "B"]
        assert gfa.binding_density_lots == []

    def test_tightening_shared_lot_reduces_other_lot(self):
        """Lowering A's K max lowers T and with it B's achievable GFA."""
        before = solve_gfa(_shared_project(k_max_a=3.0))
        after = solve_gfa(_shared_project(k_max_a=1.5))
        assert after.solution["T"] == pytest.approx(1500)
        assert after.solution["T"] < before.solution["T"]
        b_before = next(d for d in before.lot_details if d.lot_id == "B")
        b_after = next(d for d in after.lot_details if d.lot_id == "B")
        assert b_after.total_gfa < b_before.total_gfa
        assert after.total_gfa == pytest.approx(6000)

    def test_lot_details(self):
        gfa = solve_gfa(_shared_project())
        a = gfa.lot_details[0]
        assert a.lot_id == "A"
        assert a.total_gfa == pytest.approx(3000)
        assert a.k_achieved == pytest.approx(3.0)
        assert a.utilization == pytest.approx(1.0)
        assert a.is_binding
        assert a.building_count == 1

    def test_shared_type_has_one_value_everywhere(self):
        gfa = solve_gfa(_shared_project())
        values = {
            b["total_gfa"]
            for d in gfa.lot_details for b in d.buildings if b["type_id"] == "T"
        }
        assert len(values) == 1

    def test_population_row_binds(self):
        """0.0225 × T ≤ 45 → T = 2000 while FAR has plenty of room."""
        project = _make_project(
            [_make_lot("P", k_max=10, max_population=45)], [_make_type("T")], {"P": ["T"]},
        )
        gfa = solve_gfa(project)
        assert gfa.solution["T"] == pytest.approx(2000)
        assert gfa.binding_population_lots == ["P"]
        assert gfa.binding_lots == []

    def test_density_row_binds(self):
        """T / 10 ≤ 1000 × 0.25 → T = 2500."""
        project = _make_project(
            [_make_lot("A", k_max=10, density_max=0.25)], [_make_type("T")], {"A": ["T"]},
        )
        gfa = solve_gfa(project)
        assert gfa.solution["T"] == pytest.approx(2500)
        assert gfa.typical_areas["T"] == pytest.approx(250)
        assert gfa.binding_density_lots == ["A"]

    def test_infeasible_lower_bound(self):
        gfa = solve_gfa(_shared_project(), bounds_min={"T": 4000})
        assert gfa.status == "infeasible"
        assert not gfa.is_optimal
        assert gfa.solution == {}
        assert "Constraint 0" in gfa.reason

    def test_solution_types(self):
        project = _shared_project()
        types = solution_types(project, solve_gfa(project))
        assert [bt.typical_area for bt in types] == pytest.approx([300, 200])
        assert project.building_types[0].typical_area == 200

    def test_sample_project_rows_hold(self):
        project = default_project()
        problem = formulate_gfa_problem(project)
        gfa = solve_gfa(project, problem=problem)
        assert gfa.is_optimal
        x = np.array([gfa.solution[t] for t in problem.type_ids])
        assert np.all(np.array(problem.A) @ x <= np.array(problem.b) + 1e-6)
        assert np.all(x >= np.array(problem.lb) - 1e-6)
        assert np.all(x <= np.array(problem.ub) + 1e-6)

    def test_to_dict_is_plain(self):
        data = solve_gfa(_shared_project()).to_dict()
        assert data["status"] == "optimal"
        assert data["lot_details"][0]["lot_id"] == "A"


class TestBoundMonotonicity:
    """Tightening a bound never raises the optimum; relaxing never lowers it."""

    def test_lower_bound_below_optimum_changes_nothing(self):
        base = solve_gfa(_shared_project())
        raised = solve_gfa(_shared_project(), bounds_min={"U": 1500})
        assert raised.total_gfa == pytest.approx(base.total_gfa)

    def test_lower_bound_above_optimum_lowers_objective(self):
        """U ≥ 2500 squeezes T on lot B: 2 × 2500 + 2500 = 7500."""
        base = solve_gfa(_shared_project())
        raised = solve_gfa(_shared_project(), bounds_min={"U": 2500})
        assert raised.total_gfa == pytest.approx(7500)
        assert raised.total_gfa <= base.total_gfa

    def test_raising_upper_bound_never_lowers_objective(self):
        base = solve_gfa(_shared_project())
        relaxed = solve_gfa(_shared_project(), bounds_max={"T": 4000, "U": 4000})
        assert relaxed.total_gfa >= base.total_gfa - 1e-6


# ──────────────────────────────────────────────────────────────────
# SENSITIVITY
# ──────────────────────────────────────────────────────────────────

class TestSensitivity:

    def test_ranges(self):
        project = _shared_project()
        problem = formulate_gfa_problem(project)
        ranges = compute_sensitivity(solve_gfa(project, problem=problem), problem)

        t = ranges["T"]
        assert t.max == pytest.approx(3000)
        assert t.optimal == pytest.approx(3000)
        assert t.limiting_constraint == ROW_FAR
        assert t.limiting_lot in {"A", "B"}
        assert t.min == 0

        u = ranges["U"]
        assert u.max == pytest.approx(2000)
        assert u.limiting_lot == "B"
        assert u.limiting_constraint == ROW_FAR

    def test_user_minimum_reported(self):
        project = _shared_project()
        problem = formulate_gfa_problem(project, bounds_min={"T": 1200})
        ranges = compute_sensitivity(solve_gfa(project, problem=problem), problem)
        assert ranges["T"].min == 1200

    def test_unplaced_type_has_no_limit(self):
        project = _shared_project(extra_types=[_make_type("V")])
        problem = formulate_gfa_problem(project)
        ranges = compute_sensitivity(solve_gfa(project, problem=problem), problem)
        assert ranges["V"].max is None
        assert ranges["V"].limiting_lot is None
        assert ranges["V"].to_dict()["max"] is None

    def test_not_optimal_gives_empty(self):
        project = _shared_project()
        problem = formulate_gfa_problem(project, bounds_min={"T": 4000})
        assert compute_sensitivity(solve_gfa(project, problem=problem), problem) == {}
