"""Memory and swap figures read straight from /proc."""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from vps_bootstrap.errors import MetricsUnavailable
from vps_bootstrap.system import System

MEMINFO_PATH: str = "/proc/meminfo"
SWAPS_PATH: str = "/proc/swaps"

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")


@dataclass(frozen=True)
class MemorySnapshot:
    total_ram_mb: int
    free_ram_mb: int
    total_swap_mb: int
    free_swap_mb: int

    @property
    def used_swap_mb(self) -> int:
        return max(self.total_swap_mb - self.free_swap_mb, 0)


@dataclass(frozen=True)
class SwapArea:
    """One row of /proc/swaps."""

    path: str
    kind: str
    size_kb: int
    used_kb: int
    priority: int

    @property
    def size_mb(self) -> int:
        return kb_to_mb(self.size_kb)

    @property
    def used_mb(self) -> int:
        return kb_to_mb(self.used_kb)

    @property
    def is_file(self) -> bool:
        return self.kind == "file"


@dataclass(frozen=True)
class SwapStatus:
    total_mb: int
    used_mb: int


def kb_to_mb(value_kb: int) -> int:
    """
    Round kB to the nearest MB.

    The kernel reserves one header page per swap area, so a 2048MB swap file
    shows up as 2097148 kB; rounding keeps that at 2048.
    """
    return (value_kb + 512) // 1024


def parse_meminfo(text: str) -> Dict[str, int]:
    values: Dict[str, int] = {}
    for line in text.splitlines():
        key, sep, rest = line.partition(":")
        if not sep:
            continue
        parts = rest.split()
        if not parts:
            continue
        try:
            values[key.strip()] = int(parts[0])
        except ValueError:
            continue
    return values


def _unescape(path: str) -> str:
    return _OCTAL_ESCAPE.sub(lambda m: chr(int(m.group(1), 8)), path)


def parse_swaps(text: str) -> List[SwapArea]:
    areas: List[SwapArea] = []
    for line in text.strip().splitlines()[1:]:
        parts = line.split()
        if len(parts) < 5:
            continue
        name, kind, size_kb, used_kb, priority = parts[:5]
        try:
            areas.append(
                SwapArea(
                    path=_unescape(name),
                    kind=kind,
                    size_kb=int(size_kb),
                    used_kb=int(used_kb),
                    priority=int(priority),
                )
            )
        except ValueError:
            continue
    return areas


class MetricsReader:
    """Reads fresh figures on every call; nothing is cached."""

    def __init__(self, system: Optional[System] = None) -> None:
        self.system = system or System()

    def read_memory(self) -> MemorySnapshot:
        try:
            info = parse_meminfo(self.system.read_file(MEMINFO_PATH))
        except OSError as e:
            raise MetricsUnavailable(f"Cannot read {MEMINFO_PATH}: {e}") from e

        missing = [k for k in ("MemTotal", "SwapTotal", "SwapFree") if k not in info]
        if missing:
            raise MetricsUnavailable(
                f"{MEMINFO_PATH} is missing {', '.join(missing)}"
            )
        free_kb = info.get("MemAvailable", info.get("MemFree"))
        if free_kb is None:
            raise MetricsUnavailable(f"{MEMINFO_PATH} reports no free memory figure")

        return MemorySnapshot(
            total_ram_mb=kb_to_mb(info["MemTotal"]),
            free_ram_mb=kb_to_mb(free_kb),
            total_swap_mb=kb_to_mb(info["SwapTotal"]),
            free_swap_mb=kb_to_mb(info["SwapFree"]),
        )

    def list_swap_areas(self) -> List[SwapArea]:
        try:
            text = self.system.read_file(SWAPS_PATH)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise MetricsUnavailable(f"Cannot read {SWAPS_PATH}: {e}") from e
        return parse_swaps(text)

    def active_swap_files(self) -> List[SwapArea]:
        # Partitions are never touched by this tool
        return [area for area in self.list_swap_areas() if area.is_file]

    def partition_swap_mb(self) -> int:
        """Swap capacity held by areas this tool does not manage (partitions, zram)."""
        return kb_to_mb(sum(a.size_kb for a in self.list_swap_areas() if not a.is_file))

    def is_active(self, path: str) -> bool:
        return any(area.path == path for area in self.list_swap_areas())

    def get_current_swap_status_mb(self) -> SwapStatus:
        snapshot = self.read_memory()
        return SwapStatus(total_mb=snapshot.total_swap_mb, used_mb=snapshot.used_swap_mb)
