"""
restic-cron: Scheduled restic backups with Prometheus metrics.

This package runs restic on a cron-like schedule, parses the backup
summary into structured statistics and exposes them as metrics.
"""

__version__ = "0.1.0"
