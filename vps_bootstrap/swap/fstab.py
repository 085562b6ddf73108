"""Atomic rewrites of the persistent mount table."""

import os
import stat
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional, Set


def swap_entry(path: str) -> str:
    return f"{path} none swap sw 0 0"


def entry_source(line: str) -> Optional[str]:
    """First field of an fstab line, or None for blanks and comments."""
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    return stripped.split()[0]


def rewrite_lines(
    lines: Iterable[str], drop: Set[str], append: Optional[str] = None
) -> List[str]:
    """
    Drop every entry whose source is in ``drop`` and optionally append one
    swap entry for ``append``. Unrelated lines keep their text and order.
    """
    kept = [line for line in lines if entry_source(line) not in drop]
    if append is not None:
        kept.append(swap_entry(append))
    return kept


def read_entries(fstab: str) -> List[str]:
    try:
        return Path(fstab).read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return []


def write_atomic(fstab: str, lines: List[str]) -> None:
    """
    Replace ``fstab`` with ``lines`` via a temp file in the same directory and
    os.replace, so a crash leaves either the old or the new table, never half.
    """
    target = Path(fstab)
    try:
        mode = stat.S_IMODE(target.stat().st_mode)
    except FileNotFoundError:
        mode = 0o644

    fd, tmp_path = tempfile.mkstemp(
        prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write("\n".join(lines) + ("\n" if lines else ""))
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def count_entries(fstab: str, path: str) -> int:
    return sum(1 for line in read_entries(fstab) if entry_source(line) == path)
