from __future__ import annotations

from app.models.schemas import Assignment, BuildingType, Lot, Project, ProjectSettings

__all__ = ["Assignment", "BuildingType", "Lot", "Project", "ProjectSettings"]
