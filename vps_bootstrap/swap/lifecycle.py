"""
Swap file lifecycle: create, format, activate, retire, remove, persist.

Every mutating step is recorded as a planned action. In dry-run mode the
action is only logged, and handles still advance so the remaining plan can be
described.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from vps_bootstrap import LOGGER_NAME
from vps_bootstrap.config import Config
from vps_bootstrap.errors import (
    ActivationFailed,
    InsufficientDiskSpace,
    InvalidSwapRequest,
    InvalidTransition,
    RetireFailed,
    SwapError,
    SwapFileBusy,
    SwapFileSizeMismatch,
)
from vps_bootstrap.swap import fstab
from vps_bootstrap.swap.metrics import MetricsReader
from vps_bootstrap.system import MIB, System, command_error_text

logger = logging.getLogger(LOGGER_NAME)


class SwapState(Enum):
    CREATED = "created"
    FORMATTED = "formatted"
    ACTIVE = "active"
    RETIRED = "retired"
    REMOVED = "removed"


# Rollback may drop a file that never went live; nothing else skips a step.
_TRANSITIONS: Dict[SwapState, Set[SwapState]] = {
    SwapState.CREATED: {SwapState.FORMATTED, SwapState.REMOVED},
    SwapState.FORMATTED: {SwapState.ACTIVE, SwapState.REMOVED},
    SwapState.ACTIVE: {SwapState.RETIRED},
    SwapState.RETIRED: {SwapState.REMOVED},
    SwapState.REMOVED: set(),
}


@dataclass
class SwapFileHandle:
    path: str
    size_mb: int
    state: SwapState = SwapState.CREATED

    def check(self, new_state: SwapState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"{self.path}: cannot go from {self.state.value} to {new_state.value}"
            )

    def advance(self, new_state: SwapState) -> None:
        self.check(new_state)
        logger.debug(f"{self.path}: {self.state.value} -> {new_state.value}")
        self.state = new_state


class SwapFileManager:
    def __init__(
        self,
        system: Optional[System] = None,
        config: Optional[Config] = None,
        dry_run: bool = False,
    ) -> None:
        self.system = system or System()
        self.config = config or Config()
        self.metrics = MetricsReader(self.system)
        self.dry_run = dry_run
        self.actions: List[str] = []

    @property
    def owned_paths(self) -> Set[str]:
        """Paths this tool creates and may therefore rewrite in fstab."""
        return {
            self.config.SWAPFILE,
            self.config.temp_swapfile,
            self.config.EMERGENCY_SWAPFILE,
        }

    def _plan(self, description: str) -> bool:
        """Record a mutating step. Returns True when it should really run."""
        self.actions.append(description)
        if self.dry_run:
            logger.info(f"[DRY-RUN] {description}")
            return False
        logger.info(description)
        return True

    # ------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------
    def create_swap_file(self, path: str, size_mb: int) -> SwapFileHandle:
        """
        Create a formatted (not yet active) swap file of exactly ``size_mb``.

        Raises:
            SwapFileBusy: ``path`` is currently an active swap area.
            InsufficientDiskSpace: the destination filesystem is too small.
            SwapFileSizeMismatch: allocation produced a file of the wrong size.
            SwapError: allocation or mkswap failed.
        """
        if size_mb <= 0:
            raise InvalidSwapRequest(f"Swap file size must be positive, got {size_mb}MB")

        if self.metrics.is_active(path):
            raise SwapFileBusy(f"{path} is an active swap area; run swapoff on it first")

        if os.path.lexists(path):
            logger.warning(f"Removing stale swap file {path} left by an earlier run")
            if self._plan(f"rm -f {path}"):
                os.unlink(path)

        available_mb = self.system.disk_free_mb(path)
        if available_mb < size_mb:
            raise InsufficientDiskSpace(path, size_mb, available_mb)

        logger.info(f"Creating swap file: {path} ({size_mb}MB)")
        handle = SwapFileHandle(path, size_mb)
        try:
            if self._plan(f"create {path} with mode 600"):
                # Restrictive mode from the first byte: swap holds raw memory pages
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                os.close(fd)
            self._allocate(path, size_mb)
            if not self.dry_run:
                self._verify_size(path, size_mb)
            if self._plan(f"chmod 600 {path}"):
                os.chmod(path, 0o600)
            if self._plan(f"mkswap {path}"):
                self.system.run_command(["mkswap", path])
            handle.advance(SwapState.FORMATTED)
        except subprocess.CalledProcessError as e:
            self._discard_partial(path)
            raise SwapError(f"Failed to create swap file {path}: {command_error_text(e)}") from e
        except OSError as e:
            self._discard_partial(path)
            raise SwapError(f"Failed to create swap file {path}: {e}") from e
        except BaseException:
            self._discard_partial(path)
            raise
        return handle

    def _allocate(self, path: str, size_mb: int) -> None:
        """Prefer fallocate; fall back to a dd zero fill when it is missing or unsupported."""
        if self.system.command_exists("fallocate"):
            if not self._plan(f"fallocate -l {size_mb}M {path}"):
                return
            try:
                self.system.run_command(["fallocate", "-l", f"{size_mb}M", path])
                return
            except subprocess.CalledProcessError as e:
                logger.warning(f"fallocate failed ({command_error_text(e)}), using dd...")
        else:
            logger.info("fallocate not available, using dd...")

        if self._plan(f"dd if=/dev/zero of={path} bs=1M count={size_mb}"):
            self.system.run_command(
                [
                    "dd",
                    "if=/dev/zero",
                    f"of={path}",
                    "bs=1M",
                    f"count={size_mb}",
                    "status=none",
                ]
            )

    def _verify_size(self, path: str, size_mb: int) -> None:
        expected = size_mb * MIB
        actual = os.stat(path).st_size
        if actual != expected:
            raise SwapFileSizeMismatch(path, expected, actual)

    def _discard_partial(self, path: str) -> None:
        if self.dry_run or not os.path.lexists(path):
            return
        try:
            os.unlink(path)
            logger.info(f"Removed partial swap file {path}")
        except OSError as e:
            logger.error(f"Could not remove partial swap file {path}: {e}")

    # ------------------------------------------------------------
    # Activation and retirement
    # ------------------------------------------------------------
    def activate(self, handle: SwapFileHandle) -> SwapFileHandle:
        handle.check(SwapState.ACTIVE)
        if self._plan(f"swapon {handle.path}"):
            try:
                self.system.run_command(["swapon", handle.path])
            except subprocess.CalledProcessError as e:
                raise ActivationFailed(
                    f"Failed to enable swap file {handle.path}: {command_error_text(e)}"
                ) from e
        handle.advance(SwapState.ACTIVE)
        return handle

    def retire(self, handle: SwapFileHandle) -> SwapFileHandle:
        """Disable the swap area; an area that is already inactive counts as retired."""
        handle.check(SwapState.RETIRED)
        if self._plan(f"swapoff {handle.path}"):
            if not self.metrics.is_active(handle.path):
                logger.info(f"{handle.path} is not an active swap area")
            else:
                try:
                    self.system.run_command(["swapoff", handle.path])
                except subprocess.CalledProcessError as e:
                    if self.metrics.is_active(handle.path):
                        raise RetireFailed(
                            f"Failed to disable swap file {handle.path}: {command_error_text(e)}"
                        ) from e
        handle.advance(SwapState.RETIRED)
        return handle

    def remove(self, handle: SwapFileHandle) -> SwapFileHandle:
        handle.check(SwapState.REMOVED)
        if self._plan(f"rm -f {handle.path}"):
            try:
                os.unlink(handle.path)
            except FileNotFoundError:
                logger.info(f"{handle.path} not found on disk; nothing to remove")
        handle.advance(SwapState.REMOVED)
        return handle

    def relocate(self, handle: SwapFileHandle, dest: str) -> SwapFileHandle:
        """Move a live swap file into place; the kernel follows the inode."""
        if self._plan(f"mv {handle.path} {dest}"):
            os.replace(handle.path, dest)
        handle.path = dest
        return handle

    # ------------------------------------------------------------
    # Persistent mount table
    # ------------------------------------------------------------
    def persist(self, path: str, stale_paths: Iterable[str] = ()) -> None:
        """Leave exactly one fstab entry for ``path``; drop ours and ``stale_paths``."""
        drop = self.owned_paths | set(stale_paths) | {path}
        lines = fstab.rewrite_lines(fstab.read_entries(self.config.FSTAB), drop, append=path)
        if self._plan(f"update {self.config.FSTAB}: '{fstab.swap_entry(path)}'"):
            fstab.write_atomic(self.config.FSTAB, lines)

    def unpersist(self, paths: Iterable[str]) -> None:
        drop = self.owned_paths | set(paths)
        current = fstab.read_entries(self.config.FSTAB)
        lines = fstab.rewrite_lines(current, drop)
        if lines == current:
            logger.debug(f"No swap entries to remove from {self.config.FSTAB}")
            return
        removed = sorted({fstab.entry_source(line) for line in current} & drop)
        if self._plan(f"update {self.config.FSTAB}: remove entries for {', '.join(removed)}"):
            fstab.write_atomic(self.config.FSTAB, lines)
