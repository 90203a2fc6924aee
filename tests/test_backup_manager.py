"""Tests for the backup cycle."""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock

from prometheus_client import CollectorRegistry

from restic_cron.backup_manager import BackupManager
from restic_cron.commands import CommandError, CommandResult, CommandRunner
from restic_cron.config import AppConfig
from restic_cron.metrics import BackupMetrics
from restic_cron.stats import BackupStats

RESTIC_SUMMARY = (
    "Files:          56 new,     2 changed,     2 unmodified\n"
    "Added to the repo: 169.009 KiB\n"
    "processed 58 files, 97.870 MiB in 0:00\n"
)


def _failure(command: str, stderr: str = "", stdout: str = "") -> CommandError:
    return CommandError(command, "exited with status 1", returncode=1, stdout=stdout, stderr=stderr)


class TestBackupManager(unittest.TestCase):
    """Test cases for BackupManager.run."""

    def setUp(self):
        self.registry = CollectorRegistry()
        self.metrics = BackupMetrics(self.registry)
        self.runner = Mock(spec=CommandRunner)
        self.backup_output = RESTIC_SUMMARY
        self.hook_failures = {}
        self.backup_failure = None
        self.runner.run.side_effect = self._fake_run

    def _fake_run(self, args, shell=False, env=None):
        if shell:
            if args in self.hook_failures:
                raise self.hook_failures[args]
            return CommandResult(args, 0, f"ran {args}", "")
        if self.backup_failure is not None:
            raise self.backup_failure
        return CommandResult(args, 0, self.backup_output, "")

    def _manager(self, **overrides) -> BackupManager:
        values = {"schedule": "@daily", "repository": "/srv/restic", "password": "pw"}
        values.update(overrides)
        return BackupManager(AppConfig(**values), self.metrics, self.runner)

    def _sample(self, name: str) -> float:
        return self.registry.get_sample_value(name) or 0.0

    def _backup_calls(self):
        return [c for c in self.runner.run.call_args_list if not c.kwargs.get("shell")]

    def _shell_calls(self):
        return [c.args[0] for c in self.runner.run.call_args_list if c.kwargs.get("shell")]

    def test_successful_backup(self):
        result = self._manager().run()

        self.assertTrue(result.success)
        self.assertEqual(result.stats.files_new, 56)
        self.assertEqual(result.stats.bytes_processed, 102624133120)
        self.assertGreaterEqual(result.stats.duration, 0.0)
        self.assertEqual(self._sample("backups_total"), 1)
        self.assertEqual(self._sample("backups_successful_total"), 1)
        self.assertEqual(self._sample("backups_failed_total"), 0)
        self.assertEqual(self._sample("files_new_sum"), 56)
        self.assertEqual(self._sample("files_processed_sum"), 58)
        self.assertEqual(self._sample("bytes_added_sum"), 173065216)
        self.assertEqual(self._sample("backup_duration_count"), 1)

    def test_backup_invocation(self):
        manager = self._manager(args="--tag nightly /data", rclone_args="rclone.connections=4")

        manager.run()

        (call,) = self._backup_calls()
        self.assertEqual(
            call.args[0],
            ["restic", "backup", "-o", "rclone.connections=4", "--tag", "nightly", "/data"],
        )
        self.assertEqual(call.kwargs["env"]["RESTIC_PASSWORD"], "pw")

    def test_pre_command_failure_skips_backup(self):
        self.hook_failures["false"] = _failure("false", stderr="nope")

        with self.assertLogs("restic_cron.backup_manager", level="ERROR") as logs:
            result = self._manager(pre_command="false").run()

        self.assertFalse(result.success)
        self.assertEqual(result.stage, "pre-command")
        self.assertEqual(self._backup_calls(), [])
        self.assertEqual(self._sample("backups_total"), 1)
        self.assertEqual(self._sample("backups_failed_total"), 1)
        self.assertEqual(self._sample("backups_successful_total"), 0)
        self.assertIn("nope", "\n".join(logs.output))

    def test_hooks_run_around_backup(self):
        result = self._manager(pre_command="mount /mnt", post_command="umount /mnt").run()

        self.assertTrue(result.success)
        self.assertEqual(self._shell_calls(), ["mount /mnt", "umount /mnt"])
        self.assertEqual(len(self._backup_calls()), 1)

    def test_backup_failure(self):
        self.backup_failure = _failure("restic backup", stderr="Fatal: unable to open repo")

        with self.assertLogs("restic_cron.backup_manager", level="ERROR") as logs:
            result = self._manager(post_command="echo done").run()

        self.assertFalse(result.success)
        self.assertEqual(result.stage, "backup")
        self.assertIsNone(result.stats)
        self.assertEqual(self._shell_calls(), [])
        self.assertEqual(self._sample("backups_failed_total"), 1)
        self.assertEqual(self._sample("backups_total"), 1)
        self.assertEqual(self._sample("files_new_count"), 0)
        self.assertIn("unable to open repo", "\n".join(logs.output))

    def test_post_command_failure_fails_cycle(self):
        self.hook_failures["notify"] = _failure("notify", stdout="smtp down")

        result = self._manager(post_command="notify").run()

        self.assertFalse(result.success)
        self.assertEqual(result.stage, "post-command")
        self.assertEqual(len(self._backup_calls()), 1)
        self.assertEqual(self._sample("backups_failed_total"), 1)
        self.assertEqual(self._sample("backups_successful_total"), 0)
        self.assertEqual(self._sample("backup_duration_count"), 0)

    def test_unparseable_output_still_succeeds(self):
        self.backup_output = "nothing restic would print"

        with self.assertLogs("restic_cron.backup_manager", level="WARNING") as logs:
            result = self._manager().run()

        self.assertTrue(result.success)
        stats = result.stats.model_dump()
        self.assertGreaterEqual(stats.pop("duration"), 0.0)
        self.assertTrue(all(value == 0 for value in stats.values()))
        self.assertEqual(self._sample("backups_successful_total"), 1)
        self.assertEqual(self._sample("backups_failed_total"), 0)
        self.assertEqual(self._sample("files_new_count"), 1)
        self.assertTrue(any("WARNING" in line for line in logs.output))

    def test_partial_output_keeps_parsed_fields(self):
        self.backup_output = "Files: 3 new, 1 changed, 9 unmodified\n"

        result = self._manager().run()

        self.assertTrue(result.success)
        self.assertEqual(result.stats.files_new, 3)
        self.assertEqual(result.stats.bytes_added, 0)

    def test_unexpected_error_counts_as_failure(self):
        self.runner.run.side_effect = RuntimeError("kaboom")

        with self.assertLogs("restic_cron.backup_manager", level="CRITICAL"):
            result = self._manager().run()

        self.assertFalse(result.success)
        self.assertEqual(result.stage, "unexpected")
        self.assertEqual(self._sample("backups_failed_total"), 1)

    def test_stats_saved_and_reloaded(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            stats_file = str(Path(tmp_dir) / "stats.json")
            manager = self._manager(stats_file=stats_file)

            self.assertIsNone(manager.load_last_stats())
            result = manager.run()

            self.assertEqual(BackupStats.load(stats_file), result.stats)
            self.assertEqual(manager.load_last_stats(), result.stats)

    def test_stats_not_saved_on_failure(self):
        self.backup_failure = _failure("restic backup")
        with tempfile.TemporaryDirectory() as tmp_dir:
            stats_file = Path(tmp_dir) / "stats.json"
            self._manager(stats_file=str(stats_file)).run()
            self.assertFalse(stats_file.exists())

    def test_separate_registries_are_independent(self):
        self._manager().run()

        other = BackupMetrics()
        self.assertEqual(other.registry.get_sample_value("backups_total"), 0)
        self.assertEqual(self._sample("backups_total"), 1)


if __name__ == "__main__":
    unittest.main()
