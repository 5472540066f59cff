"""Quality module - Warehouse invariant validation and quality gates."""

from .validators import WarehouseValidator, ValidationConfig, InvariantResult
from .gates import QualityGate, GateResult, ValidationHardFailError

__all__ = [
    'WarehouseValidator', 'ValidationConfig', 'InvariantResult',
    'QualityGate', 'GateResult', 'ValidationHardFailError',
]
