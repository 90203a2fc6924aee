"""Subprocess execution for restic and user supplied hook commands."""

import logging
import subprocess
from typing import Dict, List, NamedTuple, Optional, Sequence, Union


class CommandResult(NamedTuple):
    """Captured outcome of a finished command."""

    args: Union[str, List[str]]
    returncode: int
    stdout: str
    stderr: str


class CommandError(RuntimeError):
    """A command exited non-zero, timed out or could not be started."""

    def __init__(
        self,
        command: str,
        message: str,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(f"{command}: {message}")
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def output(self) -> str:
        """Captured stderr, falling back to stdout when stderr is empty."""
        return self.stderr or self.stdout


class CommandRunner:
    """Runs commands synchronously and captures their output.

    ``timeout`` is ``None`` by default, so a hung command blocks the caller.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def run(
        self,
        args: Union[str, Sequence[str]],
        shell: bool = False,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        """
        Run a command to completion.

        Args:
            args: Argument list, or a command string when ``shell`` is set
            shell: Run the command through the system shell
            env: Full environment for the child (inherits ours when None)

        Returns:
            CommandResult for a zero exit status

        Raises:
            CommandError: On non-zero exit, timeout or execution failure
        """
        command = args if isinstance(args, str) else " ".join(args)
        if not isinstance(args, str):
            args = list(args)

        try:
            result = subprocess.run(
                args,
                shell=shell,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(command, f"timed out after {e.timeout} seconds")
        except OSError as e:
            raise CommandError(command, f"could not be executed: {e}")

        if result.returncode != 0:
            raise CommandError(
                command,
                f"exited with status {result.returncode}",
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )

        self.logger.debug(f"Command finished: {command}")
        return CommandResult(args, result.returncode, result.stdout, result.stderr)
