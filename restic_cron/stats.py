"""Statistics record for a single backup cycle and its file storage."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, Field


class BackupStats(BaseModel):
    """Numeric summary of one backup cycle."""

    duration: float = Field(default=0.0, ge=0, description="Elapsed seconds")
    files_new: int = Field(default=0, ge=0)
    files_changed: int = Field(default=0, ge=0)
    files_unmodified: int = Field(default=0, ge=0)
    files_processed: int = Field(default=0, ge=0)
    bytes_added: int = Field(default=0, ge=0)
    bytes_processed: int = Field(default=0, ge=0)

    def save(self, path: str | Path) -> None:
        """Write the record as JSON, atomically replacing any previous file."""
        stats_file = Path(path)
        stats_file.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            dir=stats_file.parent, prefix=f".{stats_file.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(self.model_dump_json(indent=2))
            os.replace(tmp_name, stats_file)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    @classmethod
    def load(cls, path: str | Path) -> BackupStats:
        """Read a record previously written by ``save``."""
        with open(Path(path), "r", encoding="utf-8") as f:
            return cls.model_validate_json(f.read())

    def log_fields(self) -> str:
        """Render every field as ``key=value`` pairs for log lines."""
        return " ".join(f"{name}={value}" for name, value in self.model_dump().items())
