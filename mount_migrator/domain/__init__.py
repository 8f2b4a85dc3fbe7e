"""Domain models for mount point migrations.

This package contains the immutable plan types, the per-run state threaded
through the migration phases, and the compiled-in plans.
"""

from __future__ import annotations

from .models import (
    CopyResult,
    ExclusionRule,
    FormatOptions,
    FstabEntry,
    IntegrityReport,
    LockRecord,
    MigrationPlan,
    MigrationState,
    PartitionTarget,
    PhaseStatus,
)
from .plans import PLAN_BUILDERS, build_plan


__all__ = [
    "CopyResult",
    "ExclusionRule",
    "FormatOptions",
    "FstabEntry",
    "IntegrityReport",
    "LockRecord",
    "MigrationPlan",
    "MigrationState",
    "PLAN_BUILDERS",
    "PartitionTarget",
    "PhaseStatus",
    "build_plan",
]
