"""Run summary - rows processed, rejected (by kind) and written per run."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict

logger = logging.getLogger(__name__)

REJECT_KINDS = ('schema', 'lookup')


@dataclass
class RunSummary:
    """Explicit end-of-run summary, always produced (success or failure)."""
    run_id: str
    status: str = 'running'
    processed: int = 0
    written: int = 0
    rejected: Dict[str, int] = field(default_factory=lambda: {k: 0 for k in REJECT_KINDS})
    stages: Dict[str, Any] = field(default_factory=dict)
    error: str = None

    def add_stage(self, name: str, stats: Dict[str, Any], processed: int = 0, written: int = 0,
                  rejected_schema: int = 0, rejected_lookup: int = 0) -> None:
        self.stages[name] = stats
        self.processed += processed
        self.written += written
        self.rejected['schema'] += rejected_schema
        self.rejected['lookup'] += rejected_lookup

    @property
    def total_rejected(self) -> int:
        return sum(self.rejected.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'status': self.status,
            'processed': self.processed,
            'written': self.written,
            'rejected': dict(self.rejected),
            'stages': self.stages,
            'error': self.error,
        }

    def log(self) -> None:
        logger.info(f"Run {self.run_id} summary: status={self.status}, processed={self.processed}, "
                    f"written={self.written}, rejected_schema={self.rejected['schema']}, "
                    f"rejected_lookup={self.rejected['lookup']}")
        if self.error:
            logger.error(f"Run {self.run_id} error: {self.error}")
