"""
VPS Bootstrap command line.

    vps-bootstrap swap                              # auto mode (recommended)
    vps-bootstrap swap --mode set --size-mb 2048
    vps-bootstrap swap --mode increase --delta-mb 512
    vps-bootstrap swap --mode decrease --delta-mb 512
    vps-bootstrap swap --dry-run                    # show what would happen
    vps-bootstrap setup                             # auto swap + base tools + timezone
"""

import logging
import sys
import time
from typing import Dict, List, Optional, Tuple

import click
from rich.prompt import Confirm
from rich.text import Text

from vps_bootstrap import LOGGER_NAME, VERSION
from vps_bootstrap.config import Config
from vps_bootstrap.errors import SwapError
from vps_bootstrap.logger import setup_logger
from vps_bootstrap.swap import fstab
from vps_bootstrap.swap.metrics import MemorySnapshot, MetricsReader
from vps_bootstrap.swap.migration import (
    MigrationOptions,
    MigrationResult,
    run_swap_migration,
)
from vps_bootstrap.swap.policy import MODES, recommend, resolve_target
from vps_bootstrap.system import System
from vps_bootstrap.tasks import (
    JournaldConfigurator,
    NetworkTuner,
    PackageInstaller,
    TimezoneConfigurator,
)
from vps_bootstrap.ui import (
    NordColors,
    console,
    create_header,
    display_panel,
    print_error,
    print_section,
    print_step,
    print_success,
    print_table,
    print_warning,
)

logger = logging.getLogger(LOGGER_NAME)


# ------------------------------
# Helpers
# ------------------------------
def _context(ctx: click.Context) -> Tuple[Config, System]:
    return ctx.obj["config"], ctx.obj["system"]


def require_root(ctx: click.Context, dry_run: bool = False) -> None:
    _, system = _context(ctx)
    if dry_run or system.is_root():
        return
    print_error("This command requires root privileges. Please run with sudo.")
    ctx.exit(1)


def print_memory(snapshot: MemorySnapshot) -> None:
    print_table(
        "Memory & Swap",
        ["Metric", "Value"],
        [
            ("Total RAM", f"{snapshot.total_ram_mb}MB"),
            ("Free RAM", f"{snapshot.free_ram_mb}MB"),
            ("Swap total", f"{snapshot.total_swap_mb}MB"),
            ("Swap used", f"{snapshot.used_swap_mb}MB"),
        ],
    )


def print_swap_areas(metrics: MetricsReader) -> None:
    areas = metrics.list_swap_areas()
    if not areas:
        print_warning("No swap areas active")
        return
    print_table(
        "Active Swap",
        ["Name", "Type", "Size", "Used", "Priority"],
        [
            (a.path, a.kind, f"{a.size_mb}MB", f"{a.used_mb}MB", str(a.priority))
            for a in areas
        ],
    )


def print_migration_result(result: MigrationResult, metrics: MetricsReader) -> None:
    if not result.changed:
        print_success(f"Swap already at {result.target_mb}MB - no changes needed")
        return

    if result.dry_run:
        print_section("Planned Actions")
        for number, action in enumerate(result.actions, 1):
            console.print(Text(f"{number:>2}. {action}", style=NordColors.TEXT))
    for warning in result.warnings:
        print_warning(warning)

    print_table(
        "Swap Migration Summary",
        ["Item", "Value"],
        [
            ("Initial swap", f"{result.initial_swap_mb}MB"),
            ("Target swap", f"{result.target_mb}MB"),
            ("Final swap", f"{result.final_swap_mb}MB"),
            ("Swap file", result.swap_path or "-"),
            ("State", result.state.value),
            ("Warnings", str(len(result.warnings))),
        ],
    )
    if result.dry_run:
        print_success(f"Dry run complete: swap would go {result.initial_swap_mb}MB -> {result.target_mb}MB")
        return
    print_success(f"Swap updated successfully: {result.initial_swap_mb}MB -> {result.final_swap_mb}MB")
    print_swap_areas(metrics)


def apply_swap_change(
    config: Config,
    system: System,
    mode: str,
    size_mb: Optional[int] = None,
    delta_mb: Optional[int] = None,
    dry_run: bool = False,
    assume_yes: bool = False,
) -> bool:
    """Resolve the target for ``mode``, confirm when required and run the migration."""
    metrics = MetricsReader(system)
    try:
        snapshot = metrics.read_memory()
        print_memory(snapshot)
        target = resolve_target(
            mode, snapshot.total_swap_mb, snapshot.total_ram_mb, size_mb, delta_mb
        )
        if target is None:
            print_success("RAM > 4GB and auto mode selected: no swap recommended. Nothing to do.")
            return True

        display_panel(
            f"Current swap: {snapshot.total_swap_mb}MB\nTarget swap : {target}MB",
            NordColors.FROST_2,
            "Swap Change Plan",
        )
        needs_confirmation = (
            mode != "auto" and not dry_run and not assume_yes and target != snapshot.total_swap_mb
        )
        if needs_confirmation and not Confirm.ask("Apply this swap change?", default=False):
            print_warning("Swap change cancelled.")
            return False

        options = MigrationOptions(
            min_free_ram_mb=config.MIN_SAFE_FREE_RAM_MB,
            emergency_swap_size_mb=config.EMERGENCY_SWAP_MB,
            dry_run=dry_run,
        )
        result = run_swap_migration(target, options=options, config=config, system=system)
    except SwapError as e:
        print_error(f"Swap change failed: {e}")
        return False

    print_migration_result(result, metrics)
    return True


# ------------------------------
# CLI Commands with Click
# ------------------------------
@click.group()
@click.version_option(version=VERSION)
@click.option("--log-file", default=Config.LOG_FILE, show_default=True, help="Log file path")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, log_file: str, debug: bool) -> None:
    """
    VPS Bootstrap - Nord Themed CLI

    Swap, packages, timezone, network tuning and journald limits for fresh
    Debian/Ubuntu servers.
    """
    ctx.ensure_object(dict)
    config = ctx.obj.setdefault("config", Config())
    ctx.obj.setdefault("system", System())
    config.LOG_FILE = log_file
    setup_logger(log_file, debug)


@cli.command()
@click.option("--mode", type=click.Choice(MODES), default="auto", show_default=True,
              help="auto: size from RAM; set: exact size; increase/decrease: by delta")
@click.option("--size-mb", type=click.IntRange(min=0), help="Target swap size in MB (for --mode set)")
@click.option("--delta-mb", type=click.IntRange(min=1), help="Amount to increase/decrease swap in MB")
@click.option("--dry-run", is_flag=True, help="Show what would happen without changing anything")
@click.option("-y", "--yes", "assume_yes", is_flag=True, help="Do not ask for confirmation")
@click.option("--min-free-ram-mb", type=click.IntRange(min=0), default=None,
              help="Free RAM required before swap in use may be touched")
@click.option("--emergency-swap-mb", type=click.IntRange(min=1), default=None,
              help="Size of the temporary swap used under memory pressure")
@click.pass_context
def swap(
    ctx: click.Context,
    mode: str,
    size_mb: Optional[int],
    delta_mb: Optional[int],
    dry_run: bool,
    assume_yes: bool,
    min_free_ram_mb: Optional[int],
    emergency_swap_mb: Optional[int],
) -> None:
    """Safely migrate swap to a new size."""
    config, system = _context(ctx)
    require_root(ctx, dry_run)
    if min_free_ram_mb is not None:
        config.MIN_SAFE_FREE_RAM_MB = min_free_ram_mb
    if emergency_swap_mb is not None:
        config.EMERGENCY_SWAP_MB = emergency_swap_mb

    console.print(create_header())
    print_section(f"Swap Management ({mode}{', dry run' if dry_run else ''})")
    ok = apply_swap_change(config, system, mode, size_mb, delta_mb, dry_run, assume_yes)
    ctx.exit(0 if ok else 1)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show memory, swap areas and the recommended swap size."""
    config, system = _context(ctx)
    metrics = MetricsReader(system)
    try:
        snapshot = metrics.read_memory()
    except SwapError as e:
        print_error(str(e))
        ctx.exit(1)
    print_memory(snapshot)
    print_swap_areas(metrics)
    recommended = recommend(snapshot.total_ram_mb)
    if recommended:
        print_step(f"Recommended swap for {snapshot.total_ram_mb}MB RAM: {recommended}MB")
    else:
        print_step(f"No swap recommended for {snapshot.total_ram_mb}MB RAM")
    entries = [
        line for line in fstab.read_entries(config.FSTAB)
        if len(line.split()) >= 3 and line.split()[2] == "swap"
    ]
    for line in entries:
        print_step(f"{config.FSTAB}: {line.strip()}")


@cli.command()
@click.argument("packages", nargs=-1)
@click.option("--network", "network_tools", is_flag=True,
              help="Install the network diagnostic tools instead of the base set")
@click.option("--dry-run", is_flag=True, help="Print the apt-get commands only")
@click.pass_context
def packages(
    ctx: click.Context, packages: Tuple[str, ...], network_tools: bool, dry_run: bool
) -> None:
    """Install PACKAGES (default: the base tool set)."""
    config, system = _context(ctx)
    require_root(ctx, dry_run)
    installer = PackageInstaller(config, system, dry_run=dry_run)
    if network_tools and not packages:
        print_section("Network Tools Installation")
        ctx.exit(0 if installer.install_network_tools() else 1)
    print_section("Software Installation")
    ctx.exit(0 if installer.install_packages(list(packages) or None) else 1)


@cli.command()
@click.argument("zone", required=False)
@click.option("--dry-run", is_flag=True, help="Validate the zone without applying it")
@click.pass_context
def timezone(ctx: click.Context, zone: Optional[str], dry_run: bool) -> None:
    """Set the system timezone (default: Asia/Shanghai)."""
    config, system = _context(ctx)
    require_root(ctx, dry_run)
    print_section("Timezone Configuration")
    configurator = TimezoneConfigurator(config, system, dry_run=dry_run)
    ctx.exit(0 if configurator.configure_timezone(zone) else 1)


@cli.command()
@click.option("--restore", is_flag=True, help="Remove the tuning drop-in")
@click.option("--dry-run", is_flag=True, help="Print the planned changes only")
@click.pass_context
def network(ctx: click.Context, restore: bool, dry_run: bool) -> None:
    """Apply BBR + fq_codel network tuning via sysctl."""
    config, system = _context(ctx)
    require_root(ctx, dry_run)
    print_section("Network Optimization")
    tuner = NetworkTuner(config, system, dry_run=dry_run)
    ok = tuner.restore_network_settings() if restore else tuner.apply_network_optimization()
    ctx.exit(0 if ok else 1)


@cli.command()
@click.option("--max-use", default=None, help="SystemMaxUse for persistent journals (e.g. 150M)")
@click.option("--vacuum-size", default=None, help="Vacuum journals down to this size")
@click.option("--vacuum-time", default=None, help="Vacuum journals older than this")
@click.option("--restore", is_flag=True, help="Remove the limits drop-in and restart journald")
@click.option("--usage", is_flag=True, help="Show journal disk usage and exit")
@click.option("--dry-run", is_flag=True, help="Print the planned changes only")
@click.pass_context
def journald(
    ctx: click.Context,
    max_use: Optional[str],
    vacuum_size: Optional[str],
    vacuum_time: Optional[str],
    restore: bool,
    usage: bool,
    dry_run: bool,
) -> None:
    """Limit journald disk usage and vacuum old journals."""
    config, system = _context(ctx)
    configurator = JournaldConfigurator(config, system, dry_run=dry_run)
    if usage:
        print_section("Journal Disk Usage")
        report = configurator.disk_usage()
        if report is None:
            ctx.exit(1)
        print_step(report)
        ctx.exit(0)

    require_root(ctx, dry_run)
    if restore:
        print_section("Restore Log Settings")
        ctx.exit(0 if configurator.restore_journald() else 1)
    print_section("System Logs Optimization")
    ctx.exit(0 if configurator.optimize_journald(max_use, vacuum_size, vacuum_time) else 1)


@cli.command()
@click.option("--timezone", "zone", default=None, help="Timezone to apply (default: Asia/Shanghai)")
@click.option("--dry-run", is_flag=True, help="Show what would happen without changing anything")
@click.pass_context
def setup(ctx: click.Context, zone: Optional[str], dry_run: bool) -> None:
    """Default setup: auto swap, timezone, base tools, network and log tuning."""
    config, system = _context(ctx)
    require_root(ctx, dry_run)
    console.print(create_header())

    results: Dict[str, bool] = {}
    steps: List[Tuple[str, str]] = [
        ("swap", "Swap Configuration"),
        ("timezone", "Timezone"),
        ("packages", "Base Software"),
        ("network", "Network Optimization"),
        ("journald", "System Logs Optimization"),
    ]
    start = time.time()
    for key, title in steps:
        print_section(title)
        if key == "swap":
            # Automatic setup: same safety checks, no confirmation prompt
            results[key] = apply_swap_change(config, system, "auto", dry_run=dry_run)
        elif key == "timezone":
            results[key] = TimezoneConfigurator(config, system, dry_run).configure_timezone(zone)
        elif key == "packages":
            results[key] = PackageInstaller(config, system, dry_run).install_packages()
        elif key == "network":
            results[key] = NetworkTuner(config, system, dry_run).apply_network_optimization()
        else:
            results[key] = JournaldConfigurator(config, system, dry_run).optimize_journald()

    print_table(
        "Setup Status Report",
        ["Task", "Status"],
        [
            (title, "[success]SUCCESS[/success]" if results[key] else "[error]FAILED[/error]")
            for key, title in steps
        ],
    )
    logger.info(f"Setup finished in {time.time() - start:.1f}s")
    ctx.exit(0 if all(results.values()) else 1)


def main() -> None:
    try:
        cli(obj={})
    except KeyboardInterrupt:
        print_warning("Operation cancelled by user.")
        sys.exit(130)


if __name__ == "__main__":
    main()
