"""Centralized path management for prw.

All prw-related files live under ~/.prw/ (or $PRW_HOME):
- ~/.prw/config.yaml   - User configuration (see prw_core.config)
- ~/.prw/debug/        - Rotating log file and shell command log
"""

import logging
import os
import shlex
import subprocess
import time
from pathlib import Path


def prw_home() -> Path:
    """Return the prw home directory (~/.prw/ unless PRW_HOME is set)."""
    override = os.environ.get("PRW_HOME")
    d = Path(override) if override else Path.home() / ".prw"
    d.mkdir(parents=True, exist_ok=True)
    return d


def debug_dir() -> Path:
    """Return the debug/logs directory (~/.prw/debug/)."""
    d = prw_home() / "debug"
    d.mkdir(parents=True, exist_ok=True)
    return d


def config_file() -> Path:
    """Return the path of the user config file (may not exist)."""
    return prw_home() / "config.yaml"


def debug_enabled() -> bool:
    """Check if debug logging is enabled.

    Enabled by a non-empty PRW_DEBUG env var or a ~/.prw/debug/enabled file.
    """
    if os.environ.get("PRW_DEBUG"):
        return True
    return (debug_dir() / "enabled").exists()


def set_debug(enabled: bool = True) -> None:
    """Enable or disable debug logging."""
    flag = debug_dir() / "enabled"
    if enabled:
        flag.touch()
    elif flag.exists():
        flag.unlink()


def command_log_file() -> Path:
    """Get the path to the log file shared by loggers and the command log."""
    return debug_dir() / "prw.log"


def configure_logger(name: str, max_bytes: int = 10_000_000) -> logging.Logger:
    """Configure a logger that always writes to file with rotation.

    Args:
        name: Logger name (e.g., "prw.poll_loop")
        max_bytes: Maximum log file size before rotation (default 10MB)

    Returns:
        Configured logger instance
    """
    from logging.handlers import RotatingFileHandler

    logger = logging.getLogger(name)

    # Avoid adding duplicate handlers
    if logger.handlers:
        return logger

    handler = RotatingFileHandler(
        command_log_file(),
        maxBytes=max_bytes,
        backupCount=1,
    )
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(handler)
    logger.propagate = False

    if debug_enabled():
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    return logger


def log_shell_command(cmd: list[str] | str, prefix: str = "shell",
                      returncode: int | None = None,
                      duration: float | None = None) -> None:
    """Record a shell command in the central log.

    Without *returncode* the entry marks the start of the command; with it,
    the outcome; failures log at WARNING.
    """
    cmd_str = shlex.join(cmd) if isinstance(cmd, list) else cmd
    log = configure_logger("prw.shell")
    took = f" in {duration:.1f}s" if duration is not None else ""
    if returncode is None:
        log.info("%s: %s", prefix, cmd_str)
    elif returncode == 0:
        log.debug("%s done%s: %s", prefix, took, cmd_str)
    else:
        log.warning("%s failed (rc=%d)%s: %s", prefix, returncode, took, cmd_str)


def run_shell_logged(cmd: list[str], prefix: str = "shell", **kwargs) -> subprocess.CompletedProcess:
    """Run a command with subprocess.run, logging start and outcome.

    Args:
        cmd: Command list to run
        prefix: Prefix for log entries (e.g., "gh")
        **kwargs: Passed to subprocess.run
    """
    log_shell_command(cmd, prefix)
    start = time.monotonic()
    result = subprocess.run(cmd, **kwargs)
    log_shell_command(cmd, prefix, result.returncode, time.monotonic() - start)
    return result
