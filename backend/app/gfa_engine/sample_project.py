"""
Sample project: high-rise urban area on Vũ Yên island, Hải Phòng.

Four lots, six tower footprints. Z1 and L_short are shared across lots,
which is what makes the areas interdependent. As configured, CC1 is over
its FAR cap and the other lots sit just under theirs.
"""

from __future__ import annotations

from app.models.schemas import Assignment, BuildingType, Lot, Project, ProjectSettings


def default_project() -> Project:
    lots = [
        Lot(id="CC1", name="Lot CC1", area=24474, k_max=5.30, density_max=0.40, max_floors=30),
        Lot(id="CC2", name="Lot CC2", area=18682, k_max=4.63, density_max=0.35, max_floors=30),
        Lot(id="CC3", name="Lot CC3", area=28890, k_max=5.98, density_max=0.40, max_floors=30),
        Lot(id="CC4", name="Lot CC4", area=26850, k_max=6.44, density_max=0.40, max_floors=30),
    ]

    building_types = [
        BuildingType(id="L_short", label="L short", shape="L", typical_area=1472.67, total_floors=30),  # ~53×46 m
        BuildingType(id="L_long", label="L long", shape="L", typical_area=1778.53, total_floors=30),  # ~74×46 m
        BuildingType(id="Z1", label="Z", shape="Z", typical_area=1472.67, total_floors=30),  # ~75×29 m
        BuildingType(id="I1", label="I1", shape="I", typical_area=1472.67, total_floors=30),
        BuildingType(id="I2", label="I2", shape="I", typical_area=1685.84, total_floors=30),
        BuildingType(id="SQ1", label="Square", shape="SQ", typical_area=1188.16, total_floors=30),  # ~35.6×35.6 m
    ]

    assignments = [
        Assignment(lot_id="CC1", buildings=["L_short", "L_short", "I2"]),
        Assignment(lot_id="CC2", buildings=["Z1", "Z1"]),
        Assignment(lot_id="CC3", buildings=["Z1", "Z1", "Z1", "Z1"]),
        Assignment(lot_id="CC4", buildings=["L_short", "L_short", "Z1", "Z1"]),
    ]

    return Project(
        name="Sample project: Vũ Yên island",
        description="High-rise urban area, Vũ Yên island, Hải Phòng",
        lots=lots,
        building_types=building_types,
        assignments=assignments,
        settings=ProjectSettings(
            deduction_rate=0.03,
            commercial_floors=2,
            k_target_min=0.90,
            optimization_iterations=800,
            perturbation_range=0.08,
        ),
    )
