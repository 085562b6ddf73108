# ----------------------------------------------------------------
# Signal Handling
# ----------------------------------------------------------------
import logging
import signal
import sys
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from vps_bootstrap import LOGGER_NAME

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)


def exit_code_for(signum: int) -> int:
    return (
        130
        if signum == signal.SIGINT
        else 143
        if signum == signal.SIGTERM
        else 128 + signum
    )


def signal_handler(signum: int, frame: Optional[Any]) -> None:
    """Turn the signal into SystemExit so every enclosing ``finally`` runs."""
    sig_name = signal.Signals(signum).name
    logger = logging.getLogger(LOGGER_NAME)
    logger.error(f"Script interrupted by {sig_name}. Initiating cleanup.")
    sys.exit(exit_code_for(signum))


@contextmanager
def exit_on_signals() -> Iterator[None]:
    """
    Install SIGINT/SIGTERM/SIGHUP handlers for the duration of the block and
    restore the previous ones afterwards. Outside the main thread signal
    handlers cannot be installed, so the block runs unguarded.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    previous: Dict[int, Any] = {}
    for s in HANDLED_SIGNALS:
        previous[s] = signal.signal(s, signal_handler)
    try:
        yield
    finally:
        for s, handler in previous.items():
            signal.signal(s, handler if handler is not None else signal.SIG_DFL)
