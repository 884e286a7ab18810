"""Configuration checks run before evaluation / optimization.

Returns issues instead of raising so a caller can show every problem at once.
The evaluator itself tolerates all of these (it skips what it cannot resolve).
"""

from __future__ import annotations

from dataclasses import dataclass

from app.models.schemas import Project


@dataclass
class ValidationIssue:
    level: str  # "error" or "warning"
    message: str

    def to_dict(self) -> dict:
        return {"level": self.level, "message": self.message}


def validate_project(project: Project) -> list[ValidationIssue]:
    """Return all configuration issues in ``project`` (empty list = clean)."""
    issues: list[ValidationIssue] = []

    def error(msg: str) -> None:
        issues.append(ValidationIssue("error", msg))

    def warning(msg: str) -> None:
        issues.append(ValidationIssue("warning", msg))

    if not project.lots:
        error("No lots configured")
    if not project.building_types:
        error("No building types configured")

    seen_lots: set[str] = set()
    for lot in project.lots:
        if lot.id in seen_lots:
            error(f"Duplicate lot id {lot.id!r}")
        seen_lots.add(lot.id)
        if lot.area <= 0:
            error(f"Lot {lot.id}: area must be > 0")
        if lot.k_max <= 0:
            error(f"Lot {lot.id}: k_max must be > 0")
        if lot.density_max <= 0 or lot.density_max > 1:
            warning(f"Lot {lot.id}: density_max should be in (0, 1]")

    seen_types: set[str] = set()
    for bt in project.building_types:
        if bt.id in seen_types:
            error(f"Duplicate building type id {bt.id!r}")
        seen_types.add(bt.id)
        if bt.total_floors <= 0:
            warning(f"Building type {bt.id}: total_floors is 0, it adds no floor area")
        if bt.min_area is not None and bt.max_area is not None and bt.min_area > bt.max_area:
            error(f"Building type {bt.id}: min_area > max_area")

    assigned: set[str] = set()
    for a in project.assignments:
        if a.lot_id not in seen_lots:
            error(f"Assignment references unknown lot {a.lot_id!r}")
        if a.lot_id in assigned:
            warning(f"Lot {a.lot_id}: multiple assignments, buildings are combined")
        assigned.add(a.lot_id)
        for type_id in a.buildings:
            if type_id not in seen_types:
                warning(f"Lot {a.lot_id}: unknown building type {type_id!r}")

    for lot in project.lots:
        if lot.id not in assigned:
            warning(f"Lot {lot.id} has no buildings assigned")

    return issues
