"""
Adaptive Resource Management for Batch Restoration.

Detects available system resources (RAM, CPU) and sizes the batch worker
pool. Each worker holds a few full-resolution copies of one page, so the
pool is bounded by RAM as well as by the CPU count.

Resource tiers:
  - CONSTRAINED: < 2 GB available RAM → single worker
  - MODERATE:    2-6 GB available RAM → RAM-bounded workers, at most 6
  - ABUNDANT:    > 6 GB available RAM → CPU count - 1 workers

Memory profile of one worker:
  - Base process overhead:   ~150 MB
  - Per-worker peak:         ~250 MB (600 DPI A4 page plus intermediates)
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum, auto

from scanrestore.constants import (
    BASE_PROCESS_OVERHEAD_MB,
    PER_WORKER_COST_MB,
    RESOURCE_TIER_CONSTRAINED_GB,
    RESOURCE_TIER_MODERATE_GB,
)

logger = logging.getLogger(__name__)

_MODERATE_MAX_WORKERS = 6
_RAM_BUDGET_SHARE = 0.7


class ResourceTier(Enum):
    """System resource tier for adaptive configuration."""

    CONSTRAINED = auto()  # < 2 GB free RAM
    MODERATE = auto()  # 2-6 GB free RAM
    ABUNDANT = auto()  # > 6 GB free RAM


@dataclass(frozen=True)
class ResourceProfile:
    """Snapshot of available system resources.

    Attributes:
        available_ram_mb: Currently available RAM in MB
        total_ram_mb: Total system RAM in MB
        cpu_count: Number of logical CPU cores
        tier: Computed resource tier
    """

    available_ram_mb: int
    total_ram_mb: int
    cpu_count: int
    tier: ResourceTier


def _tier_for(available_mb: int) -> ResourceTier:
    available_gb = available_mb / 1024
    if available_gb < RESOURCE_TIER_CONSTRAINED_GB:
        return ResourceTier.CONSTRAINED
    if available_gb < RESOURCE_TIER_MODERATE_GB:
        return ResourceTier.MODERATE
    return ResourceTier.ABUNDANT


def detect_resources() -> ResourceProfile:
    """Detect current system resources.

    Uses psutil for accurate measurement. Falls back to /proc/meminfo
    when psutil cannot be imported, then applies cgroup v2 limits.

    Returns:
        ResourceProfile with current system state.
    """
    cpu_count = os.cpu_count() or 4

    try:
        import psutil

        mem = psutil.virtual_memory()
        available_mb = int(mem.available / (1024 * 1024))
        total_mb = int(mem.total / (1024 * 1024))
    except ImportError:
        # Fallback: read from /proc/meminfo (Linux)
        try:
            with open("/proc/meminfo") as f:
                meminfo = {}
                for line in f:
                    parts = line.split()
                    if len(parts) >= 2:
                        meminfo[parts[0].rstrip(":")] = int(parts[1])  # kB

            total_mb = meminfo.get("MemTotal", 4 * 1024 * 1024) // 1024
            available_mb = meminfo.get("MemAvailable", meminfo.get("MemFree", 0)) // 1024
        except (OSError, ValueError):
            total_mb = 8192
            available_mb = total_mb // 2

    # Respect cgroup v2 memory limits (containers, Flatpak, systemd slices)
    try:
        with open("/sys/fs/cgroup/memory.max") as f:
            raw = f.read().strip()
            if raw != "max":
                cgroup_limit_mb = int(raw) // (1024 * 1024)
                total_mb = min(total_mb, cgroup_limit_mb)
                available_mb = min(available_mb, cgroup_limit_mb)
    except (OSError, ValueError):
        pass

    tier = _tier_for(available_mb)
    profile = ResourceProfile(
        available_ram_mb=available_mb,
        total_ram_mb=total_mb,
        cpu_count=cpu_count,
        tier=tier,
    )

    logger.info(
        f"Resource detection: {available_mb} MB available / {total_mb} MB total, "
        f"{cpu_count} CPUs → {tier.name}"
    )
    return profile


def compute_worker_count(profile: ResourceProfile, requested: int = 0) -> int:
    """Number of batch workers for the given resources.

    Args:
        profile: Current system resource profile
        requested: Explicit worker count; 0 or less means automatic

    Returns:
        Worker count (at least 1)
    """
    if requested > 0:
        return requested

    cpu_workers = max(1, profile.cpu_count - 1)
    if profile.tier == ResourceTier.CONSTRAINED:
        workers = 1
    else:
        usable_mb = profile.available_ram_mb - BASE_PROCESS_OVERHEAD_MB
        ram_workers = max(1, int(usable_mb * _RAM_BUDGET_SHARE / PER_WORKER_COST_MB))
        workers = min(cpu_workers, ram_workers)
        if profile.tier == ResourceTier.MODERATE:
            workers = min(workers, _MODERATE_MAX_WORKERS)

    logger.info(f"Batch workers: {workers} (tier {profile.tier.name}, {profile.cpu_count} CPUs)")
    return workers
