"""
Base system setup steps around the swap core.

Each step shells out to the standard system utility, logs what it does and
returns True/False instead of raising, so a batch of steps can carry on past
one failure.
"""

import datetime
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

from vps_bootstrap import LOGGER_NAME
from vps_bootstrap.config import Config
from vps_bootstrap.system import System, command_error_text

logger = logging.getLogger(LOGGER_NAME)

MANAGED_HEADER = "# Managed by vps-bootstrap. Remove this file to restore distribution defaults."


def backup_file(fp: str) -> Optional[str]:
    if os.path.isfile(fp):
        ts = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
        backup = f"{fp}.bak.{ts}"
        try:
            shutil.copy2(fp, backup)
            logger.info(f"Backed up {fp} to {backup}")
            return backup
        except OSError as e:
            logger.warning(f"Backup failed {fp}: {e}")
            return None
    logger.debug(f"{fp} not found; skipping backup.")
    return None


class SetupTask:
    def __init__(
        self,
        config: Optional[Config] = None,
        system: Optional[System] = None,
        dry_run: bool = False,
    ) -> None:
        self.config = config or Config()
        self.system = system or System()
        self.dry_run = dry_run

    def _run(
        self, cmd: List[str], check: bool = True, **kwargs: Any
    ) -> Optional[subprocess.CompletedProcess]:
        if self.dry_run:
            logger.info(f"[DRY-RUN] {' '.join(cmd)}")
            return None
        return self.system.run_command(cmd, check=check, **kwargs)

    def _write(self, path: str, content: str) -> None:
        if self.dry_run:
            logger.info(f"[DRY-RUN] write {path}")
            return
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        backup_file(path)
        Path(path).write_text(content, encoding="utf-8")


class PackageInstaller(SetupTask):
    def install_packages(self, packages: Optional[List[str]] = None) -> bool:
        packages = list(dict.fromkeys(packages or self.config.BASE_PACKAGES))
        if not packages:
            logger.warning("No packages to install.")
            return True
        env = dict(os.environ, DEBIAN_FRONTEND="noninteractive")
        try:
            logger.info("Running apt-get update...")
            self._run(["apt-get", "update", "-y"], env=env)
            logger.info(f"Installing: {' '.join(packages)}")
            self._run(["apt-get", "install", "-y"] + packages, env=env)
            logger.info("Package installation complete.")
            return True
        except subprocess.CalledProcessError as e:
            logger.error(f"Package install error: {command_error_text(e)}")
            return False

    def install_network_tools(self) -> bool:
        logger.info("Installing network diagnostic tools...")
        return self.install_packages(self.config.NETWORK_PACKAGES)


class TimezoneConfigurator(SetupTask):
    def current_timezone(self) -> str:
        try:
            result = self.system.run_command(
                ["timedatectl", "show", "-p", "Timezone", "--value"]
            )
            return result.stdout.strip() or "Unknown"
        except (subprocess.CalledProcessError, OSError):
            return "Unknown"

    def configure_timezone(self, tz: Optional[str] = None) -> bool:
        tz = tz or self.config.DEFAULT_TIMEZONE
        logger.info(f"Setting timezone to {tz}...")
        tz_file = os.path.join(self.config.ZONEINFO_DIR, tz)
        if ".." in tz.split("/") or not os.path.isfile(tz_file):
            logger.error(f"Unknown timezone '{tz}' ({tz_file} not found).")
            return False
        try:
            self._run(["timedatectl", "set-timezone", tz])
        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to set timezone: {command_error_text(e)}")
            return False
        if not self.dry_run:
            logger.info(f"Timezone set to {self.current_timezone()}")
        return True


class NetworkTuner(SetupTask):
    def render_sysctl(self, settings: Optional[Dict[str, str]] = None) -> str:
        settings = settings or self.config.SYSCTL_SETTINGS
        lines = [MANAGED_HEADER, "# BBR + fq_codel and TCP/UDP buffer tuning"]
        lines += [f"{key} = {value}" for key, value in settings.items()]
        return "\n".join(lines) + "\n"

    def bbr_available(self) -> bool:
        try:
            result = self.system.run_command(
                ["sysctl", "-n", "net.ipv4.tcp_available_congestion_control"]
            )
        except (subprocess.CalledProcessError, OSError):
            return False
        if "bbr" in result.stdout.split():
            return True
        # The module may simply not be loaded yet
        if self.dry_run:
            logger.info("[DRY-RUN] modprobe tcp_bbr")
            return True
        try:
            self.system.run_command(["modprobe", "tcp_bbr"])
            return True
        except (subprocess.CalledProcessError, OSError):
            return False

    def apply_network_optimization(self) -> bool:
        logger.info("Applying network optimization settings...")
        settings = dict(self.config.SYSCTL_SETTINGS)
        if not self.bbr_available():
            logger.warning("BBR not available on this kernel; keeping the current congestion control")
            settings.pop("net.ipv4.tcp_congestion_control", None)
        try:
            self._write(self.config.SYSCTL_DROPIN, self.render_sysctl(settings))
            self._run(["sysctl", "--system"])
        except (OSError, subprocess.CalledProcessError) as e:
            logger.error(f"Failed to apply network optimization: {e}")
            return False
        if not self.dry_run:
            for key in ("net.ipv4.tcp_congestion_control", "net.core.default_qdisc"):
                result = self.system.run_command(["sysctl", "-n", key], check=False)
                logger.info(f"{key} = {result.stdout.strip()}")
        logger.info("Network optimization applied.")
        return True

    def restore_network_settings(self) -> bool:
        dropin = self.config.SYSCTL_DROPIN
        if not os.path.exists(dropin):
            logger.warning(f"{dropin} not found; nothing to restore.")
            return True
        try:
            if self.dry_run:
                logger.info(f"[DRY-RUN] rm -f {dropin}")
            else:
                os.unlink(dropin)
            self._run(["sysctl", "--system"])
        except (OSError, subprocess.CalledProcessError) as e:
            logger.error(f"Failed to restore network settings: {e}")
            return False
        logger.info("Network settings restored; reboot to fully reset runtime values.")
        return True


class JournaldConfigurator(SetupTask):
    def render_journald(self, settings: Optional[Dict[str, str]] = None) -> str:
        settings = settings or self.config.JOURNALD_SETTINGS
        lines = [MANAGED_HEADER, "[Journal]"]
        lines += [f"{key}={value}" for key, value in settings.items()]
        return "\n".join(lines) + "\n"

    def optimize_journald(
        self,
        max_use: Optional[str] = None,
        vacuum_size: Optional[str] = None,
        vacuum_time: Optional[str] = None,
    ) -> bool:
        settings = dict(self.config.JOURNALD_SETTINGS)
        if max_use:
            settings["SystemMaxUse"] = max_use
        vacuum_size = vacuum_size or self.config.JOURNAL_VACUUM_SIZE
        vacuum_time = vacuum_time or self.config.JOURNAL_VACUUM_TIME

        logger.info("Configuring journald limits...")
        try:
            self._write(self.config.JOURNALD_DROPIN, self.render_journald(settings))
        except OSError as e:
            logger.error(f"Failed to write {self.config.JOURNALD_DROPIN}: {e}")
            return False

        try:
            self._run(["systemctl", "restart", "systemd-journald"])
        except subprocess.CalledProcessError as e:
            logger.warning(f"Failed to restart journald service: {command_error_text(e)}")

        for flag in (f"--vacuum-size={vacuum_size}", f"--vacuum-time={vacuum_time}"):
            try:
                self._run(["journalctl", flag])
            except subprocess.CalledProcessError as e:
                logger.warning(f"journalctl {flag} failed: {command_error_text(e)}")
        logger.info("Journald configuration applied.")
        return True

    def restore_journald(self) -> bool:
        dropin = self.config.JOURNALD_DROPIN
        if not os.path.exists(dropin):
            logger.warning(f"{dropin} not found; nothing to restore.")
            return True
        try:
            if self.dry_run:
                logger.info(f"[DRY-RUN] rm -f {dropin}")
            else:
                os.unlink(dropin)
            self._run(["systemctl", "restart", "systemd-journald"])
        except (OSError, subprocess.CalledProcessError) as e:
            logger.error(f"Failed to restore journald defaults: {e}")
            return False
        logger.info("Journald limits restored to distribution defaults.")
        return True

    def disk_usage(self) -> Optional[str]:
        """Output of `journalctl --disk-usage`, or None when journalctl fails."""
        try:
            result = self.system.run_command(["journalctl", "--disk-usage"])
        except (subprocess.CalledProcessError, OSError) as e:
            logger.error(f"Failed to read journal disk usage: {e}")
            return None
        return result.stdout.strip()
