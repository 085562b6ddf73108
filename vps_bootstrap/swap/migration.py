"""
Swap migration: replace the active swap file without ever dropping below the
current swap capacity.

Order of operations:
  1. Read memory; a target equal to the current swap size is a no-op
  2. Safety check, provisioning an emergency swap file under memory pressure
  3. Create the new swap file next to the canonical path
  4. Activate it (old and new swap are briefly live together)
  5. Retire and remove the old swap file
  6. Move the new file into place and rewrite fstab
  7. Release the emergency swap file

Increase, decrease and set all go through this one pipeline. The target is
total swap: swap partitions are never touched and count towards it, the file
is sized to make up the rest. A target of 0 disables the swap files: the old
file is retired, nothing new is created, partitions stay on.
"""

import errno
import fcntl
import logging
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Set

from vps_bootstrap import LOGGER_NAME
from vps_bootstrap.config import Config
from vps_bootstrap.errors import (
    ActivationFailed,
    EmergencyProvisionFailed,
    InvalidSwapRequest,
    InvalidTransition,
    MigrationLocked,
    RetireFailed,
    SafetyAbort,
    SwapError,
)
from vps_bootstrap.signals import exit_on_signals
from vps_bootstrap.swap.guard import EmergencySwap, is_safe_to_mutate_swap
from vps_bootstrap.swap.lifecycle import SwapFileHandle, SwapFileManager, SwapState
from vps_bootstrap.swap.metrics import MetricsReader, SwapArea, SwapStatus
from vps_bootstrap.system import System

logger = logging.getLogger(LOGGER_NAME)


class MigrationState(Enum):
    IDLE = "idle"
    SIZING_COMPUTED = "sizing_computed"
    SAFETY_CHECKED = "safety_checked"
    NEW_FILE_READY = "new_file_ready"
    NEW_FILE_ACTIVE = "new_file_active"
    OLD_FILE_RETIRED = "old_file_retired"
    FINALIZED = "finalized"
    COMPLETE = "complete"
    ABORTED = "aborted"


@dataclass
class MigrationOptions:
    min_free_ram_mb: int = 200
    emergency_swap_size_mb: int = 512
    dry_run: bool = False


@dataclass
class MigrationResult:
    initial_swap_mb: int
    target_mb: int
    final_swap_mb: int
    changed: bool
    state: MigrationState
    dry_run: bool = False
    swap_path: Optional[str] = None
    actions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@contextmanager
def migration_lock(path: str) -> Iterator[None]:
    """Advisory lock so two migrations never run on the same host at once."""
    with open(path, "a") as lock_file:
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            if e.errno in (errno.EAGAIN, errno.EACCES):
                raise MigrationLocked(
                    f"Another swap migration is running (lock held on {path})"
                ) from e
            raise
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


class SwapMigration:
    """One migration run. Instances are single-use."""

    def __init__(
        self,
        config: Optional[Config] = None,
        system: Optional[System] = None,
        options: Optional[MigrationOptions] = None,
    ) -> None:
        self.config = config or Config()
        self.system = system or System()
        self.options = options or MigrationOptions(
            min_free_ram_mb=self.config.MIN_SAFE_FREE_RAM_MB,
            emergency_swap_size_mb=self.config.EMERGENCY_SWAP_MB,
        )
        self.metrics = MetricsReader(self.system)
        self.manager = SwapFileManager(self.system, self.config, dry_run=self.options.dry_run)
        self.emergency = EmergencySwap(self.manager)
        self.state = MigrationState.IDLE
        self.history: List[MigrationState] = [MigrationState.IDLE]
        self.warnings: List[str] = []

    def _enter(self, state: MigrationState) -> None:
        logger.debug(f"Swap migration: {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    # ------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------
    def run(self, target_mb: int) -> MigrationResult:
        if target_mb < 0:
            raise InvalidSwapRequest(f"Target swap size cannot be negative: {target_mb}MB")
        if self.state is not MigrationState.IDLE:
            raise InvalidTransition("A SwapMigration instance can only run once")

        lock = nullcontext() if self.options.dry_run else migration_lock(self.config.LOCK_FILE)
        try:
            with lock:
                try:
                    return self._run(target_mb)
                finally:
                    # Every exit path, including signals turned into SystemExit
                    self.emergency.release()
        except BaseException as e:
            self._enter(MigrationState.ABORTED)
            logger.error(f"Swap migration aborted: {e}")
            raise

    def _run(self, target_mb: int) -> MigrationResult:
        snapshot = self.metrics.read_memory()
        initial_mb = snapshot.total_swap_mb
        # Partitions stay active and count towards the target; the file makes up the rest
        partition_mb = self.metrics.partition_swap_mb()
        self._enter(MigrationState.SIZING_COMPUTED)

        if target_mb == 0:
            unchanged = not self.metrics.active_swap_files()
        else:
            unchanged = target_mb == initial_mb
        if unchanged:
            logger.info(f"Current swap ({initial_mb}MB) already matches target. Nothing to do.")
            self._enter(MigrationState.COMPLETE)
            return self._result(initial_mb, target_mb, initial_mb, changed=False)

        if 0 < target_mb <= partition_mb:
            raise InvalidSwapRequest(
                f"Target {target_mb}MB does not exceed the {partition_mb}MB of swap "
                f"partitions, which this tool leaves untouched"
            )

        logger.info(f"Swap change plan: {initial_mb}MB -> {target_mb}MB")

        if not is_safe_to_mutate_swap(snapshot, self.options.min_free_ram_mb):
            message = (
                f"Memory too full to safely adjust swap right now "
                f"(free RAM {snapshot.free_ram_mb}MB < {self.options.min_free_ram_mb}MB, "
                f"swap in use {snapshot.used_swap_mb}MB)"
            )
            if target_mb == 0:
                # The emergency file goes away at the end, so it cannot absorb these pages
                raise SafetyAbort(f"{message}. Refusing to disable swap.")
            logger.warning(message)
            try:
                self.emergency.provision(
                    self.options.emergency_swap_size_mb, self.config.EMERGENCY_SWAPFILE
                )
            except EmergencyProvisionFailed as e:
                raise SafetyAbort(f"{message}. {e}") from e
        self._enter(MigrationState.SAFETY_CHECKED)

        if target_mb == 0:
            return self._disable(initial_mb, partition_mb)

        new_handle = self._create_new_file(target_mb - partition_mb)
        self._activate_new_file(new_handle)
        old_handle = self._retire_old_file(new_handle)
        swap_path = self._finalize(new_handle, old_handle)

        self.emergency.release()
        self._enter(MigrationState.COMPLETE)
        return self._result(
            initial_mb, target_mb, self._final_swap_mb(target_mb), changed=True, swap_path=swap_path
        )

    # ------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------
    def _create_new_file(self, size_mb: int) -> SwapFileHandle:
        handle = self.manager.create_swap_file(self.config.temp_swapfile, size_mb)
        self._enter(MigrationState.NEW_FILE_READY)
        return handle

    def _activate_new_file(self, handle: SwapFileHandle) -> None:
        try:
            self.manager.activate(handle)
        except ActivationFailed:
            try:
                self.manager.remove(handle)
            except OSError as e:
                logger.error(f"Could not remove {handle.path}: {e}")
            raise
        self._enter(MigrationState.NEW_FILE_ACTIVE)

    def _old_swap_files(self, exclude: Set[str]) -> List[SwapArea]:
        """Active swap files other than ``exclude``, the canonical path first."""
        candidates = [a for a in self.metrics.active_swap_files() if a.path not in exclude]
        candidates.sort(key=lambda a: a.path != self.config.SWAPFILE)
        return candidates

    def _retire_old_file(self, new_handle: SwapFileHandle) -> Optional[SwapFileHandle]:
        candidates = self._old_swap_files({new_handle.path, self.config.EMERGENCY_SWAPFILE})
        if not candidates:
            logger.info("No existing swapfile to disable.")
            self._enter(MigrationState.OLD_FILE_RETIRED)
            return None

        old = candidates[0]
        for extra in candidates[1:]:
            self._warn(f"Leaving additional swap file {extra.path} ({extra.size_mb}MB) untouched")

        logger.info(f"Disabling old swapfile: {old.path}")
        handle = SwapFileHandle(old.path, old.size_mb, SwapState.ACTIVE)
        try:
            self.manager.retire(handle)
            self.manager.remove(handle)
        except RetireFailed as e:
            self._warn(f"{e}. The new swap is active; remove {old.path} manually later.")
        except OSError as e:
            self._warn(f"Could not remove old swapfile {old.path}: {e}")
        self._enter(MigrationState.OLD_FILE_RETIRED)
        return handle

    def _finalize(
        self, new_handle: SwapFileHandle, old_handle: Optional[SwapFileHandle]
    ) -> str:
        canonical = self.config.SWAPFILE
        stale: List[str] = []
        blocked = False
        if old_handle is not None:
            if old_handle.state is SwapState.ACTIVE:
                blocked = old_handle.path == canonical
            else:
                stale.append(old_handle.path)

        try:
            if blocked:
                self._warn(
                    f"{canonical} is still active; keeping the new swap file at {new_handle.path}"
                )
            else:
                logger.info(f"Renaming {new_handle.path} to {canonical}")
                self.manager.relocate(new_handle, canonical)
            self.manager.persist(new_handle.path, stale)
        except OSError as e:
            raise SwapError(
                f"New swap is active at {new_handle.path} but finalizing failed: {e}"
            ) from e
        self._enter(MigrationState.FINALIZED)
        return new_handle.path

    def _disable(self, initial_mb: int, partition_mb: int) -> MigrationResult:
        candidates = self._old_swap_files({self.config.EMERGENCY_SWAPFILE})
        if not candidates:
            self._warn("No swap files are active; only swap partitions (if any) remain")

        removed: List[str] = []
        try:
            for area in candidates:
                logger.info(f"Disabling swapfile: {area.path}")
                handle = SwapFileHandle(area.path, area.size_mb, SwapState.ACTIVE)
                self.manager.retire(handle)
                removed.append(area.path)
                try:
                    self.manager.remove(handle)
                except OSError as e:
                    self._warn(f"Could not remove swapfile {area.path}: {e}")
        finally:
            # Files already switched off must not be re-enabled at boot
            if removed or not candidates:
                self.manager.unpersist(removed)
        self._enter(MigrationState.OLD_FILE_RETIRED)
        self._enter(MigrationState.FINALIZED)
        self._enter(MigrationState.COMPLETE)
        return self._result(initial_mb, 0, self._final_swap_mb(partition_mb), changed=True)

    # ------------------------------------------------------------
    # Results
    # ------------------------------------------------------------
    def _final_swap_mb(self, expected_mb: int) -> int:
        if self.options.dry_run:
            return expected_mb
        return self.metrics.read_memory().total_swap_mb

    def _result(
        self,
        initial_mb: int,
        target_mb: int,
        final_mb: int,
        changed: bool,
        swap_path: Optional[str] = None,
    ) -> MigrationResult:
        return MigrationResult(
            initial_swap_mb=initial_mb,
            target_mb=target_mb,
            final_swap_mb=final_mb,
            changed=changed,
            state=self.state,
            dry_run=self.options.dry_run,
            swap_path=swap_path,
            actions=list(self.manager.actions),
            warnings=list(self.warnings),
        )


# ----------------------------------------------------------------
# Public helpers
# ----------------------------------------------------------------
def run_swap_migration(
    target_mb: int,
    options: Optional[MigrationOptions] = None,
    config: Optional[Config] = None,
    system: Optional[System] = None,
) -> MigrationResult:
    """Run one migration with SIGINT/SIGTERM/SIGHUP turned into a clean unwind."""
    migration = SwapMigration(config=config, system=system, options=options)
    with exit_on_signals():
        return migration.run(target_mb)


def get_current_swap_status_mb(system: Optional[System] = None) -> SwapStatus:
    return MetricsReader(system).get_current_swap_status_mb()
