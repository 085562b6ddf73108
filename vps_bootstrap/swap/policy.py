"""Swap sizing: RAM-based recommendation and mode resolution."""

from typing import Optional

from vps_bootstrap.errors import InvalidSwapRequest

MODES = ("auto", "set", "increase", "decrease")

# (inclusive RAM upper bound in MB, recommended swap in MB)
SIZING_TABLE = (
    (1024, 2048),
    (2048, 2048),
    (4096, 1024),
)


def recommend(total_ram_mb: int) -> int:
    """
    Recommended swap size for a machine with ``total_ram_mb`` of RAM.

    Returns 0 above 4GB of RAM, meaning no swap is recommended.
    """
    if total_ram_mb < 0:
        raise ValueError(f"RAM size cannot be negative: {total_ram_mb}")
    for upper_bound, swap_mb in SIZING_TABLE:
        if total_ram_mb <= upper_bound:
            return swap_mb
    return 0


def compute_recommended_swap_mb(total_ram_mb: int) -> int:
    return recommend(total_ram_mb)


def resolve_target(
    mode: str,
    current_swap_mb: int,
    total_ram_mb: int,
    size_mb: Optional[int] = None,
    delta_mb: Optional[int] = None,
) -> Optional[int]:
    """
    Turn a CLI mode into a target swap size in MB.

    Returns None when ``auto`` mode recommends no swap: nothing should change.
    A return value of 0 means swap is to be disabled.
    """
    if mode == "auto":
        target = recommend(total_ram_mb)
        return target if target > 0 else None

    if mode == "set":
        if size_mb is None or size_mb < 0:
            raise InvalidSwapRequest("Mode 'set' requires --size-mb >= 0")
        return size_mb

    if mode in ("increase", "decrease"):
        if delta_mb is None or delta_mb <= 0:
            raise InvalidSwapRequest(f"Mode '{mode}' requires --delta-mb > 0")

        if mode == "increase":
            # With no swap yet, 'increase' acts like 'set'
            return current_swap_mb + delta_mb

        if current_swap_mb == 0:
            raise InvalidSwapRequest("No existing swap to decrease")
        if delta_mb > current_swap_mb:
            raise InvalidSwapRequest(
                f"Cannot decrease swap below 0MB "
                f"(current {current_swap_mb}MB, delta {delta_mb}MB)"
            )
        return current_swap_mb - delta_mb

    raise InvalidSwapRequest(f"Unknown mode '{mode}'. Expected one of: {', '.join(MODES)}")
