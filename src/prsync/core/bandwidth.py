"""
Bandwidth allocation for prsync workers.

The budget is split evenly once, when the pool starts. A worker that
finishes early does not hand its share to the others.
"""

from typing import Optional

# 1 Mbit/s = 125 KB/s, the unit of rsync --bwlimit
KBS_PER_MBPS = 125


def mbps_to_kbs(mbps: int) -> int:
    """Convert a Mbit/s budget into rsync's --bwlimit unit"""
    return mbps * KBS_PER_MBPS


def allocate_bandwidth(total: Optional[int], workers: int) -> int:
    """
    Split a bandwidth budget evenly across workers

    Args:
        total: Total budget, or None/0 for no limit
        workers: Number of workers sharing it

    Returns:
        Per-worker limit in the unit of `total`; 0 means unlimited
    """
    if workers < 1:
        raise ValueError(f"Worker count must be at least 1, got {workers}")
    if not total:
        return 0
    # Never round a real budget down to "unlimited"
    return max(total // workers, 1)
