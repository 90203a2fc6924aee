#!/usr/bin/env python3
"""
restic-cron: Scheduled restic backups with Prometheus metrics.

Main entry point for the backup application.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from restic_cron.backup_manager import BackupManager
from restic_cron.config import AppConfig, ConfigError, load_config
from restic_cron.metrics import BackupMetrics, MetricsServer
from restic_cron.repository import RepositoryError, ensure_repository
from restic_cron.schedule_checker import BackupScheduler, ScheduleError

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(message)s"

logger = logging.getLogger("restic-cron")


def setup_logging(config: AppConfig, log_level: Optional[str] = None) -> logging.Logger:
    """Set up logging configuration."""
    root = logging.getLogger()
    root.setLevel(log_level or config.log_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if config.log_file:
        log_file_path = Path(config.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return root


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Run restic backups on a cron schedule and export metrics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                       # Configure from environment, run scheduler
  python main.py --config config.yaml  # Read settings from a YAML file first
  python main.py --once                # Run a single backup and exit
        """,
    )

    parser.add_argument(
        "--config",
        "-c",
        help="YAML configuration file (environment variables take precedence)",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single backup and exit without starting the scheduler",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the configured log level",
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main application entry point."""
    scheduler = None
    metrics_server = None

    try:
        args = parse_arguments(argv)
        config = load_config(args.config)
        setup_logging(config, args.log_level)

        ensure_repository(config)

        manager = BackupManager(config, BackupMetrics())
        manager.load_last_stats()

        if args.once:
            result = manager.run()
            return 0 if result.success else 2

        host, port = config.metrics_listen
        metrics_server = MetricsServer(
            manager.metrics.registry, host, port, config.prometheus_endpoint
        )
        metrics_server.start()

        scheduler = BackupScheduler(config.schedule, manager.run)
        logger.info(f"Scheduling backups with '{config.schedule}'")
        scheduler.run(run_on_boot=config.run_on_boot)
        return 0

    except FileNotFoundError as e:
        error_msg = f"Configuration file error: {e}"
        print(f"ERROR: {error_msg}", file=sys.stderr)
        return 1

    except ConfigError as e:
        error_msg = f"Failed to configure: {e}"
        print(f"ERROR: {error_msg}", file=sys.stderr)
        return 1

    except RepositoryError as e:
        logger.critical(f"Failed to ensure repository: {e}")
        return 1

    except ScheduleError as e:
        logger.critical(f"Failed to schedule task: {e}")
        return 1

    except OSError as e:
        logger.critical(f"Startup failed: {e}")
        return 1

    except KeyboardInterrupt:
        if scheduler is not None:
            scheduler.stop()
        logger.warning("Interrupted, shutting down")
        return 130

    finally:
        if metrics_server is not None:
            metrics_server.stop()


if __name__ == "__main__":
    exit_code = main()
    sys.exit(exit_code)
