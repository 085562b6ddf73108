# ----------------------------------------------------------------
# Command Execution Utilities
# ----------------------------------------------------------------
import logging
import os
import shutil
import subprocess
from typing import Any, List, Union

from vps_bootstrap import LOGGER_NAME

logger = logging.getLogger(LOGGER_NAME)

MIB: int = 1024 * 1024


class System:
    """
    Thin wrapper over the host: subprocess calls, /proc reads and
    filesystem capacity. Everything that talks to the kernel goes through here.
    """

    def run_command(
        self,
        cmd: Union[List[str], str],
        check: bool = True,
        capture_output: bool = True,
        text: bool = True,
        **kwargs: Any,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd) if isinstance(cmd, list) else cmd
        logger.debug(f"Executing: {cmd_str}")
        try:
            return subprocess.run(
                cmd, check=check, capture_output=capture_output, text=text, **kwargs
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"Command failed: {cmd_str} with exit code {e.returncode}")
            logger.debug(f"Error: {getattr(e, 'stderr', 'N/A')}")
            raise

    def command_exists(self, cmd: str) -> bool:
        return shutil.which(cmd) is not None

    def read_file(self, path: str) -> str:
        with open(path, encoding="utf-8") as f:
            return f.read()

    def disk_free_mb(self, path: str) -> int:
        """Free space in MB on the filesystem holding ``path`` (or its parent)."""
        target = path if os.path.isdir(path) else os.path.dirname(path) or "/"
        return shutil.disk_usage(target).free // MIB

    def is_root(self) -> bool:
        return os.geteuid() == 0


def command_error_text(e: subprocess.CalledProcessError) -> str:
    """Best-effort one-line description of a failed command."""
    output = e.stderr or e.stdout or ""
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    detail = output.strip()
    cmd = " ".join(e.cmd) if isinstance(e.cmd, list) else str(e.cmd)
    return f"{cmd} exited with {e.returncode}" + (f": {detail}" if detail else "")
