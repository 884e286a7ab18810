from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class GFAMode(str, Enum):
    SIMPLIFIED = "simplified"    # counted = total × (1 − deduction_rate)
    FLOOR_SPLIT = "floor_split"  # explicit commercial / residential / deduction floors


class Lot(BaseModel):
    id: str
    name: Optional[str] = None
    area: float = Field(ge=0)  # m²
    k_max: float = Field(ge=0)  # max FAR (hệ số SDD)
    density_max: float = Field(default=0.4, ge=0)  # footprint / land area
    max_floors: int = Field(default=0, ge=0)  # 0 = no cap
    max_population: float = Field(default=0, ge=0)  # 0 = unlimited


class BuildingType(BaseModel):
    id: str
    label: Optional[str] = None
    shape: str = "I"  # cosmetic: L, Z, I, SQ, ...
    typical_area: float = Field(ge=0)  # footprint of one building, m²
    total_floors: int = Field(default=30, ge=0)
    commercial_floors: Optional[int] = Field(default=None, ge=0)
    min_area: Optional[float] = Field(default=None, ge=0)
    max_area: Optional[float] = Field(default=None, ge=0)

    @property
    def total_gfa(self) -> float:
        """Gross floor area of one building of this type."""
        return self.typical_area * self.total_floors


class Assignment(BaseModel):
    lot_id: str
    buildings: list[str] = []  # type ids, repeats allowed


class ProjectSettings(BaseModel):
    deduction_rate: float = Field(default=0.03, ge=0, lt=1)
    commercial_floors: int = Field(default=2, ge=0)
    k_target_min: float = Field(default=0.90, gt=0, le=1)
    net_area_ratio: float = Field(default=0.9, gt=0, le=1)  # net / gross residential area
    area_per_person: float = Field(default=32, gt=0)  # m² net residential per person
    optimization_iterations: int = Field(default=800, gt=0)
    perturbation_range: float = Field(default=0.08, gt=0, lt=1)
    bounds_range: float = Field(default=0.5, gt=0, le=1)
    gfa_mode: GFAMode = GFAMode.SIMPLIFIED
    max_combined_far: float = Field(default=13.0, gt=0)  # QCVN 01:2021/BXD §2.6.3


class Project(BaseModel):
    name: str = "Untitled project"
    description: str = ""
    lots: list[Lot] = []
    building_types: list[BuildingType] = []
    assignments: list[Assignment] = []
    settings: ProjectSettings = ProjectSettings()

    def with_types(self, building_types: list[BuildingType]) -> "Project":
        """Copy of this project with a different building type table."""
        return self.model_copy(update={"building_types": list(building_types)})


# ──────────────────────────────────────────────────────────────────
# API REQUESTS
# ──────────────────────────────────────────────────────────────────

class LPSolveRequest(BaseModel):
    c: list[float]
    A: list[list[float]]
    b: list[float]
    lb: Optional[list[float]] = None
    ub: Optional[list[Optional[float]]] = None  # None entries = no upper bound


class LPOptimizeRequest(BaseModel):
    project: Project
    bounds_min: dict[str, float] = {}  # type id → min total GFA per building
    bounds_max: dict[str, float] = {}
    bounds_range: Optional[float] = Field(default=None, gt=0, le=1)
    include_density: bool = True


class OptimizeRequest(BaseModel):
    project: Project
    iterations: Optional[int] = Field(default=None, gt=0)
    perturbation_range: Optional[float] = Field(default=None, gt=0, lt=1)
    bounds_range: Optional[float] = Field(default=None, gt=0, le=1)
    seed: Optional[int] = None


class ReverseGoal(BaseModel):
    total_gfa: Optional[float] = None
    far_target: Optional[float] = None
    utilization_target: Optional[float] = None


class ReverseRequest(BaseModel):
    project: Project
    lot_id: str
    target: ReverseGoal = ReverseGoal()
    locked_type_ids: list[str] = []


class MaxFeasibleRequest(BaseModel):
    project: Project
    lot_id: str
    locked_type_ids: list[str] = []
