from .reconcile import ProcessedItem, ReconciliationResult, apply_vehicle_data, build_session_index, preview
from .schemas import VehicleData, VehicleDataStats, parse_vehicle_data

__all__ = [
    "ProcessedItem",
    "ReconciliationResult",
    "VehicleData",
    "VehicleDataStats",
    "apply_vehicle_data",
    "build_session_index",
    "parse_vehicle_data",
    "preview",
]
