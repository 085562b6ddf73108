"""Memory safety checks and the temporary emergency swap file."""

import logging
from typing import Optional

from vps_bootstrap import LOGGER_NAME
from vps_bootstrap.errors import EmergencyProvisionFailed, SwapError
from vps_bootstrap.swap.lifecycle import SwapFileHandle, SwapFileManager, SwapState
from vps_bootstrap.swap.metrics import MemorySnapshot

logger = logging.getLogger(LOGGER_NAME)

DEFAULT_MIN_FREE_RAM_MB: int = 200


def is_safe_to_mutate_swap(
    snapshot: MemorySnapshot, min_free_ram_mb: int = DEFAULT_MIN_FREE_RAM_MB
) -> bool:
    """
    False when free RAM is below ``min_free_ram_mb`` while swap holds pages:
    taking swap capacity away then risks an OOM kill mid-migration.
    """
    logger.info(f"Free RAM: {snapshot.free_ram_mb}MB")
    logger.info(f"Current swap used: {snapshot.used_swap_mb}MB")
    return not (snapshot.free_ram_mb < min_free_ram_mb and snapshot.used_swap_mb > 0)


class EmergencySwap:
    """
    Stopgap swap file provisioned while memory pressure is high.

    One instance belongs to one migration; ``release`` is safe to call any
    number of times and never raises.
    """

    def __init__(self, manager: SwapFileManager) -> None:
        self.manager = manager
        self.handle: Optional[SwapFileHandle] = None

    @property
    def path(self) -> Optional[str]:
        return self.handle.path if self.handle else None

    @property
    def active(self) -> bool:
        return self.handle is not None and self.handle.state is SwapState.ACTIVE

    def provision(self, size_mb: int, path: str) -> "EmergencySwap":
        if self.active:
            logger.info(f"Emergency swap already active at {self.path}")
            return self

        logger.warning(f"Provisioning temporary emergency swap: {path} ({size_mb}MB)")
        handle: Optional[SwapFileHandle] = None
        try:
            handle = self.manager.create_swap_file(path, size_mb)
            self.manager.activate(handle)
        except (SwapError, OSError) as e:
            if handle is not None and handle.state is SwapState.FORMATTED:
                try:
                    self.manager.remove(handle)
                except OSError as cleanup_error:
                    logger.error(f"Could not remove {path}: {cleanup_error}")
            raise EmergencyProvisionFailed(
                f"Could not provision emergency swap at {path}: {e}"
            ) from e

        self.handle = handle
        return self

    def release(self) -> None:
        handle = self.handle
        if handle is None or handle.state is SwapState.REMOVED:
            return
        logger.info(f"Releasing emergency swap {handle.path}")
        try:
            if handle.state is SwapState.ACTIVE:
                self.manager.retire(handle)
            self.manager.remove(handle)
        except Exception as e:
            logger.error(
                f"Failed to release emergency swap {handle.path}: {e}. "
                f"Run 'swapoff {handle.path} && rm -f {handle.path}' manually."
            )
