"""Initialization of the restic repository before backups are scheduled."""

import logging
import re
from typing import Optional

from .commands import CommandError, CommandRunner
from .config import AppConfig

logger = logging.getLogger(__name__)

MATCH_EXISTS = re.compile(r".*already (exists|initialized).*")


class RepositoryError(RuntimeError):
    """The repository could not be initialized or confirmed."""


def ensure_repository(config: AppConfig, runner: Optional[CommandRunner] = None) -> bool:
    """
    Create the repository unless it already exists.

    Returns:
        True if a new repository was created, False if it already existed

    Raises:
        RepositoryError: If ``restic init`` fails for any other reason
    """
    runner = runner or CommandRunner()
    logger.info("Ensuring backup repository exists")

    try:
        runner.run([config.restic_binary, "init"], env=config.restic_env())
    except CommandError as e:
        output = e.output.strip(" \n\r")
        if MATCH_EXISTS.search(output):
            logger.info("Repository exists")
            return False
        raise RepositoryError(f"Failed to initialize repository: {e}\n{output}") from e

    logger.info("Successfully created repository")
    return True
