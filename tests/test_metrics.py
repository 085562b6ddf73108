"""Tests for /proc parsing."""

import pytest

from vps_bootstrap.errors import MetricsUnavailable
from vps_bootstrap.swap.metrics import (
    MemorySnapshot,
    MetricsReader,
    kb_to_mb,
    parse_meminfo,
    parse_swaps,
)

MEMINFO = """\
MemTotal:        1004852 kB
MemFree:           81236 kB
MemAvailable:     402120 kB
Buffers:           20480 kB
SwapTotal:       2097148 kB
SwapFree:        1572860 kB
HugePages_Total:       0
"""

SWAPS = """\
Filename\t\t\t\tType\t\tSize\t\tUsed\t\tPriority
/swapfile                               file\t\t2097148\t\t524288\t\t-2
/dev/vda2                               partition\t1048572\t\t0\t\t-3
/mnt/my\\040swap                         file\t\t524284\t\t0\t\t-4
"""


class TestParsing:
    def test_kb_to_mb_absorbs_header_page(self):
        assert kb_to_mb(2097148) == 2048
        assert kb_to_mb(0) == 0

    def test_parse_meminfo(self):
        info = parse_meminfo(MEMINFO)
        assert info["MemTotal"] == 1004852
        assert info["SwapFree"] == 1572860
        assert info["HugePages_Total"] == 0

    def test_parse_meminfo_skips_garbage(self):
        assert parse_meminfo("garbage\nMemTotal: lots kB\nSwapTotal: 0 kB\n") == {"SwapTotal": 0}

    def test_parse_swaps(self):
        areas = parse_swaps(SWAPS)
        assert [a.path for a in areas] == ["/swapfile", "/dev/vda2", "/mnt/my swap"]
        assert areas[0].size_mb == 2048
        assert areas[0].used_mb == 512
        assert areas[0].is_file
        assert not areas[1].is_file
        assert areas[2].priority == -4

    def test_parse_swaps_header_only(self):
        assert parse_swaps("Filename\tType\tSize\tUsed\tPriority\n") == []


class TestMemorySnapshot:
    def test_used_swap(self):
        assert MemorySnapshot(1024, 500, 2048, 1500).used_swap_mb == 548

    def test_used_swap_never_negative(self):
        assert MemorySnapshot(1024, 500, 0, 10).used_swap_mb == 0


class TestMetricsReader:
    def test_read_memory_prefers_mem_available(self, fake_system):
        system = fake_system()
        system.read_file = lambda path: MEMINFO
        snapshot = MetricsReader(system).read_memory()
        assert snapshot.total_ram_mb == 981
        assert snapshot.free_ram_mb == 393
        assert snapshot.total_swap_mb == 2048
        assert snapshot.used_swap_mb == 512

    def test_read_memory_falls_back_to_mem_free(self, fake_system):
        system = fake_system()
        system.read_file = lambda path: MEMINFO.replace("MemAvailable:     402120 kB\n", "")
        assert MetricsReader(system).read_memory().free_ram_mb == 79

    def test_missing_fields(self, fake_system):
        system = fake_system()
        system.read_file = lambda path: "MemTotal: 1024 kB\nMemFree: 100 kB\n"
        with pytest.raises(MetricsUnavailable, match="SwapTotal"):
            MetricsReader(system).read_memory()

    def test_unreadable_meminfo(self, fake_system):
        system = fake_system()
        system.meminfo_error = PermissionError("denied")
        with pytest.raises(MetricsUnavailable):
            MetricsReader(system).read_memory()

    def test_swap_status_and_active_files(self, fake_system, tmp_path):
        system = fake_system(total_ram_mb=2048)
        system.add_swap_file(tmp_path / "swapfile", 1024, used_mb=100)
        system.add_swap_partition("/dev/vda2", 512)
        reader = MetricsReader(system)

        status = reader.get_current_swap_status_mb()
        assert status.total_mb == 1536
        assert status.used_mb == 100
        assert [a.path for a in reader.active_swap_files()] == [str(tmp_path / "swapfile")]
        assert reader.is_active("/dev/vda2")
        assert not reader.is_active(str(tmp_path / "other"))
        assert reader.partition_swap_mb() == 512

    def test_missing_proc_swaps(self, fake_system):
        system = fake_system()

        def read_file(path):
            raise FileNotFoundError(path)

        system.read_file = read_file
        assert MetricsReader(system).list_swap_areas() == []
