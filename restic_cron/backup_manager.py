"""Core backup cycle: hook commands, restic backup, statistics and metrics."""

import logging
import time
from typing import Optional

from .commands import CommandError, CommandRunner
from .config import AppConfig
from .metrics import BackupMetrics
from .output_parser import StatsParseError, parse_backup_output
from .stats import BackupStats


class BackupResult:
    """Result of one backup cycle."""

    def __init__(
        self,
        success: bool,
        stats: Optional[BackupStats] = None,
        stage: str = "",
        error_message: str = "",
    ):
        self.success = success
        self.stats = stats
        self.stage = stage
        self.error_message = error_message

    def __repr__(self) -> str:
        return (
            f"BackupResult(success={self.success}, stage={self.stage!r}, "
            f"error_message={self.error_message!r})"
        )


class BackupManager:
    """Runs backup cycles and records their outcome."""

    def __init__(
        self,
        config: AppConfig,
        metrics: Optional[BackupMetrics] = None,
        runner: Optional[CommandRunner] = None,
    ):
        self.config = config
        self.metrics = metrics if metrics is not None else BackupMetrics()
        self.runner = runner or CommandRunner()
        self.logger = logging.getLogger(__name__)

    def run(self) -> BackupResult:
        """
        Perform one backup cycle.

        A failing pre-command, backup or post-command ends the cycle and is
        counted as failed. Missing statistics in the restic output are only
        logged; the cycle still counts as successful.
        """
        try:
            return self._run_cycle()
        except Exception as e:
            self.logger.critical(f"Unexpected error during backup: {e}", exc_info=True)
            return self._fail("unexpected", f"Unexpected error during backup: {e}")

    def _run_cycle(self) -> BackupResult:
        self.logger.info("Backup started")
        start_time = time.monotonic()

        if self.config.pre_command:
            failure = self._run_hook("pre-command", self.config.pre_command)
            if failure is not None:
                return failure

        args = [self.config.restic_binary, *self.config.backup_args]
        self.logger.info(f"Launching backup command: {' '.join(args)}")

        try:
            result = self.runner.run(args, env=self.config.restic_env())
        except CommandError as e:
            self.logger.error(f"Failed to run backup: {e}\noutput: {e.stderr}")
            return self._fail("backup", str(e))

        if self.config.post_command:
            failure = self._run_hook("post-command", self.config.post_command)
            if failure is not None:
                return failure

        try:
            stats = parse_backup_output(result.stdout)
        except StatsParseError as e:
            self.logger.warning(f"Failed to extract statistics from command output: {e}")
            stats = e.partial
        stats.duration = time.monotonic() - start_time

        self.metrics.record_success()
        self.observe_stats(stats)
        self._save_stats(stats)

        return BackupResult(success=True, stats=stats)

    def observe_stats(self, stats: BackupStats) -> None:
        """Log the statistics and feed them into the metric histograms."""
        self.logger.info(f"Backup reading: {stats.log_fields()}")
        self.metrics.observe(stats)

    def _run_hook(self, stage: str, command: str) -> Optional[BackupResult]:
        try:
            result = self.runner.run(command, shell=True)
        except CommandError as e:
            self.logger.error(f"Failed to execute {stage}: {e}\noutput: {e.output}")
            return self._fail(stage, str(e))

        self.logger.info(f"Output of {stage}: {result.stdout}")
        return None

    def _fail(self, stage: str, error_message: str) -> BackupResult:
        self.metrics.record_failure()
        return BackupResult(success=False, stage=stage, error_message=error_message)

    def _save_stats(self, stats: BackupStats) -> None:
        if not self.config.stats_file:
            return
        try:
            stats.save(self.config.stats_file)
        except OSError as e:
            self.logger.warning(f"Could not save statistics to {self.config.stats_file}: {e}")

    def load_last_stats(self) -> Optional[BackupStats]:
        """Load the statistics saved by the previous successful cycle, if any."""
        if not self.config.stats_file:
            return None
        try:
            stats = BackupStats.load(self.config.stats_file)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            self.logger.warning(
                f"Could not load statistics from {self.config.stats_file}: {e}"
            )
            return None

        self.logger.info(f"Previous backup reading: {stats.log_fields()}")
        return stats
