# fleet_engine/infrastructure/shell.py
"""Subprocess helper shared by every external-tool adapter."""

import logging
import os
import subprocess
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

from fleet_engine.core.errors import CommandError

logger = logging.getLogger(__name__)


def run_command(
    args: Sequence[str],
    *,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[int] = None,
    check: bool = True,
) -> subprocess.CompletedProcess:
    """
    Run ``args`` and capture output.

    ``env`` is merged over the current environment. A non-zero exit raises
    CommandError when ``check`` is set; a timeout is reported the same way.
    """
    merged_env = os.environ.copy()
    if env:
        merged_env.update(env)

    command = [str(a) for a in args]
    logger.debug(f"[shell] running {' '.join(command)} (cwd={cwd})")

    try:
        result = subprocess.run(
            command,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise CommandError(command, -1, f"timed out after {timeout}s")
    except FileNotFoundError as e:
        raise CommandError(command, 127, str(e))

    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stderr, result.stdout)

    return result


CommandRunner = Callable[..., subprocess.CompletedProcess]
