"""Per-AOI job orchestration (python -m bloomium.worker)."""

from bloomium.worker.job import DateStatus, IndexHistory, JobInput, JobOrchestrator

__all__ = ["DateStatus", "IndexHistory", "JobInput", "JobOrchestrator"]
