"""Process-level shell helper for incidental host tooling."""

from __future__ import annotations

import logging
import subprocess

from govledger.repository.errors import UnknownError

logger = logging.getLogger(__name__)


def run_command(command: str) -> None:
    """Run *command* through the host shell.

    Output is not captured.

    Raises
    ------
    UnknownError
        If the process cannot be spawned or exits non-zero.
    """
    logger.info("RUN: %s", command)
    try:
        result = subprocess.run(command, shell=True)
    except OSError as exc:
        raise UnknownError(f"failed to execute process: {exc}") from exc
    if result.returncode != 0:
        raise UnknownError(f"failed to run process (rc={result.returncode}): {command}")
