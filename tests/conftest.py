"""Shared test fixtures."""

import os
import subprocess
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

import pytest

from vps_bootstrap.config import Config
from vps_bootstrap.swap.metrics import MEMINFO_PATH, SWAPS_PATH
from vps_bootstrap.system import MIB, System

SWAP_COMMANDS = {"fallocate", "dd", "mkswap", "swapon", "swapoff"}

# The kernel keeps one header page per swap area out of the usable size
HEADER_KB = 4


class FakeArea:
    def __init__(
        self,
        path: str,
        kind: str,
        size_kb: int,
        used_kb: int = 0,
        priority: int = -2,
        inode: Optional[Tuple[int, int]] = None,
    ) -> None:
        self.path = path
        self.kind = kind
        self.size_kb = size_kb
        self.used_kb = used_kb
        self.priority = priority
        self.inode = inode


class FakeSystem(System):
    """
    System double that simulates /proc/meminfo, /proc/swaps and the swap
    utilities on top of real files under a temp directory.

    Swap files are tracked by inode so a rename of a live swap file is
    reflected in /proc/swaps the way the kernel reports it.
    """

    def __init__(
        self,
        total_ram_mb: int = 1024,
        free_ram_mb: int = 800,
        disk_free_mb: int = 100_000,
        tools: Optional[Iterable[str]] = None,
        fail: Optional[Iterable[str]] = None,
        fail_swapon: Optional[Iterable[str]] = None,
        fail_swapoff: Optional[Iterable[str]] = None,
        short_allocation: bool = False,
        command_outputs: Optional[Dict[tuple, Union[str, Exception]]] = None,
        root: bool = True,
    ) -> None:
        self.total_ram_mb = total_ram_mb
        self.free_ram_mb = free_ram_mb
        self.free_disk_mb = disk_free_mb
        self.tools: Set[str] = set(tools if tools is not None else SWAP_COMMANDS)
        self.fail: Set[str] = set(fail or [])
        self.fail_swapon: Set[str] = set(fail_swapon or [])
        self.fail_swapoff: Set[str] = set(fail_swapoff or [])
        self.short_allocation = short_allocation
        self.command_outputs = command_outputs or {}
        self.root = root
        self.meminfo_error: Optional[OSError] = None
        self.areas: List[FakeArea] = []
        self.formatted: Set[Tuple[int, int]] = set()
        self.commands: List[List[str]] = []
        self.before_command: Optional[Callable[[List[str]], None]] = None

    # ------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------
    def add_swap_file(self, path: Union[str, Path], size_mb: int, used_mb: int = 0) -> None:
        """Create ``path`` on disk and register it as an active swap file."""
        path = str(path)
        with open(path, "wb"):
            pass
        os.truncate(path, size_mb * MIB)
        os.chmod(path, 0o600)
        inode = _inode(path)
        self.formatted.add(inode)
        self.areas.append(
            FakeArea(path, "file", size_mb * 1024 - HEADER_KB, used_mb * 1024, self._next_priority(), inode)
        )

    def add_swap_partition(self, device: str, size_mb: int, used_mb: int = 0) -> None:
        self.areas.append(
            FakeArea(device, "partition", size_mb * 1024 - HEADER_KB, used_mb * 1024, self._next_priority())
        )

    def _next_priority(self) -> int:
        return -2 - len(self.areas)

    # ------------------------------------------------------------
    # Views
    # ------------------------------------------------------------
    def area_path(self, area: FakeArea) -> str:
        if area.inode is None:
            return area.path
        if os.path.exists(area.path) and _inode(area.path) == area.inode:
            return area.path
        directory = os.path.dirname(area.path)
        for name in os.listdir(directory):
            candidate = os.path.join(directory, name)
            if _inode(candidate) == area.inode:
                area.path = candidate
                return candidate
        return area.path + " (deleted)"

    def active_paths(self) -> List[str]:
        return [self.area_path(a) for a in self.areas]

    @property
    def mutating_commands(self) -> List[List[str]]:
        return [c for c in self.commands if c[0] in SWAP_COMMANDS]

    def render_meminfo(self) -> str:
        swap_total = sum(a.size_kb for a in self.areas)
        swap_used = sum(a.used_kb for a in self.areas)
        return (
            f"MemTotal:       {self.total_ram_mb * 1024} kB\n"
            f"MemFree:        {self.free_ram_mb * 1024} kB\n"
            f"MemAvailable:   {self.free_ram_mb * 1024} kB\n"
            f"Buffers:           1024 kB\n"
            f"SwapTotal:      {swap_total} kB\n"
            f"SwapFree:       {swap_total - swap_used} kB\n"
        )

    def render_swaps(self) -> str:
        lines = ["Filename\t\t\t\tType\t\tSize\t\tUsed\t\tPriority"]
        for a in self.areas:
            name = self.area_path(a).replace(" ", "\\040")
            lines.append(f"{name}\t{a.kind}\t{a.size_kb}\t{a.used_kb}\t{a.priority}")
        return "\n".join(lines) + "\n"

    # ------------------------------------------------------------
    # System interface
    # ------------------------------------------------------------
    def read_file(self, path: str) -> str:
        if path == MEMINFO_PATH:
            if self.meminfo_error is not None:
                raise self.meminfo_error
            return self.render_meminfo()
        if path == SWAPS_PATH:
            return self.render_swaps()
        return super().read_file(path)

    def command_exists(self, cmd: str) -> bool:
        return cmd in self.tools

    def disk_free_mb(self, path: str) -> int:
        return self.free_disk_mb

    def is_root(self) -> bool:
        return self.root

    def run_command(self, cmd, check=True, capture_output=True, text=True, **kwargs):
        cmd = list(cmd)
        if self.before_command is not None:
            self.before_command(cmd)
        self.commands.append(cmd)
        name = cmd[0]
        if name in self.fail:
            return self._failed(cmd, check, f"{name}: operation not supported")
        handler = getattr(self, f"_cmd_{name}", None)
        if handler is not None:
            return handler(cmd, check)

        output = self.command_outputs.get(tuple(cmd), "")
        if isinstance(output, Exception):
            raise output
        if isinstance(output, subprocess.CompletedProcess):
            return output
        return subprocess.CompletedProcess(cmd, returncode=0, stdout=output, stderr="")

    def _ok(self, cmd: List[str]) -> subprocess.CompletedProcess:
        return subprocess.CompletedProcess(cmd, returncode=0, stdout="", stderr="")

    def _failed(self, cmd: List[str], check: bool, stderr: str) -> subprocess.CompletedProcess:
        if check:
            raise subprocess.CalledProcessError(1, cmd, output="", stderr=stderr)
        return subprocess.CompletedProcess(cmd, returncode=1, stdout="", stderr=stderr)

    def _find_area(self, path: str) -> Optional[FakeArea]:
        for area in self.areas:
            if self.area_path(area) == path:
                return area
        return None

    def _cmd_fallocate(self, cmd: List[str], check: bool) -> subprocess.CompletedProcess:
        size_mb = int(cmd[cmd.index("-l") + 1].rstrip("M"))
        self._allocate(cmd[-1], size_mb)
        return self._ok(cmd)

    def _cmd_dd(self, cmd: List[str], check: bool) -> subprocess.CompletedProcess:
        args = dict(a.split("=", 1) for a in cmd[1:] if "=" in a)
        self._allocate(args["of"], int(args["count"]))
        return self._ok(cmd)

    def _allocate(self, path: str, size_mb: int) -> None:
        size = size_mb * MIB
        if self.short_allocation:
            size -= MIB
        os.truncate(path, size)

    def _cmd_mkswap(self, cmd: List[str], check: bool) -> subprocess.CompletedProcess:
        path = cmd[-1]
        if not os.path.exists(path):
            return self._failed(cmd, check, f"mkswap: cannot open {path}: No such file or directory")
        self.formatted.add(_inode(path))
        return self._ok(cmd)

    def _cmd_swapon(self, cmd: List[str], check: bool) -> subprocess.CompletedProcess:
        path = cmd[-1]
        if path in self.fail_swapon:
            return self._failed(cmd, check, f"swapon: {path}: swapon failed: Invalid argument")
        if not os.path.exists(path) or _inode(path) not in self.formatted:
            return self._failed(cmd, check, f"swapon: {path}: read swap header failed")
        if self._find_area(path) is not None:
            return self._failed(cmd, check, f"swapon: {path}: swapon failed: Device or resource busy")
        size_kb = os.stat(path).st_size // 1024 - HEADER_KB
        self.areas.append(FakeArea(path, "file", size_kb, 0, self._next_priority(), _inode(path)))
        return self._ok(cmd)

    def _cmd_swapoff(self, cmd: List[str], check: bool) -> subprocess.CompletedProcess:
        path = cmd[-1]
        if path in self.fail_swapoff:
            return self._failed(cmd, check, f"swapoff: {path}: swapoff failed: Cannot allocate memory")
        area = self._find_area(path)
        if area is None:
            return self._failed(cmd, check, f"swapoff: {path}: swapoff failed: Invalid argument")
        self.areas.remove(area)
        return self._ok(cmd)


def _inode(path: str) -> Tuple[int, int]:
    st = os.stat(path)
    return st.st_dev, st.st_ino


ROOT_LINE = "UUID=1f2e3d4c / ext4 errors=remount-ro 0 1"


@pytest.fixture
def config(tmp_path: Path) -> Config:
    fstab = tmp_path / "fstab"
    fstab.write_text(f"# /etc/fstab: static file system information.\n{ROOT_LINE}\n")
    zoneinfo = tmp_path / "zoneinfo"
    (zoneinfo / "Asia").mkdir(parents=True)
    (zoneinfo / "Asia" / "Shanghai").write_bytes(b"TZif2")
    (zoneinfo / "UTC").write_bytes(b"TZif2")
    return Config(
        LOG_FILE=str(tmp_path / "vps_bootstrap.log"),
        SWAPFILE=str(tmp_path / "swapfile"),
        FSTAB=str(fstab),
        EMERGENCY_SWAPFILE=str(tmp_path / "swapfile.emergency"),
        LOCK_FILE=str(tmp_path / "swap.lock"),
        ZONEINFO_DIR=str(zoneinfo),
        SYSCTL_DROPIN=str(tmp_path / "sysctl.d" / "99-vps-bootstrap.conf"),
        JOURNALD_DROPIN=str(tmp_path / "journald.conf.d" / "99-vps-bootstrap.conf"),
    )


@pytest.fixture
def fake_system():
    """Factory fixture for creating FakeSystem instances."""
    def _create(**kwargs) -> FakeSystem:
        return FakeSystem(**kwargs)
    return _create
