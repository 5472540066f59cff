"""Quality Gate - Decision maker for pass/fail."""

import logging
from dataclasses import dataclass, field
from typing import Dict

from .validators import InvariantResult

logger = logging.getLogger(__name__)


class ValidationHardFailError(Exception):
    """Raised when validation fails hard."""

    def __init__(self, message: str, violations: Dict[str, int] = None):
        self.violations = violations or {}
        super().__init__(message)


@dataclass
class GateResult:
    """Quality gate result."""
    status: str  # 'success', 'failed'
    message: str
    violations: Dict[str, int] = field(default_factory=dict)


class QualityGate:
    """Decision maker for pass/fail based on invariant results."""

    def evaluate(self, result: InvariantResult) -> GateResult:
        """Evaluate invariant result. Raises ValidationHardFailError on any violation."""
        violations = result.violations
        if violations:
            summary = ', '.join(f'{k}={v}' for k, v in violations.items())
            raise ValidationHardFailError(f'Warehouse invariants violated: {summary}', violations)

        logger.info('Quality gate passed')
        return GateResult('success', f'Passed: {result.reconciled_invoices} invoices reconciled')
