"""Parsing of restic backup output into statistics."""

import re
from typing import List, NamedTuple

from .stats import BackupStats

UNIT_MULTIPLIERS = {
    "TiB": 1 << 40,
    "GiB": 1 << 30,
    "MiB": 1 << 20,
    "KiB": 1 << 10,
}


class ExtractionRule(NamedTuple):
    """A named pattern with the number of groups a match must yield.

    ``groups`` counts the whole match plus every capture group.
    """

    name: str
    pattern: re.Pattern
    groups: int


FILES_RULE = ExtractionRule(
    "files",
    re.compile(r"Files:\s*(\d+) new,\s*(\d+) changed,\s*(\d+) unmodified"),
    4,
)
ADDED_RULE = ExtractionRule(
    "added",
    re.compile(r"Added to the repo: (\d+(?:\.\d+)?) (\w+)"),
    3,
)
PROCESSED_RULE = ExtractionRule(
    "processed",
    re.compile(r"processed (\d+) files, (\d+(?:\.\d+)?) (\w+)"),
    4,
)

RULES = (FILES_RULE, ADDED_RULE, PROCESSED_RULE)


class StatsParseError(ValueError):
    """Raised when an expected line is missing from the backup output."""

    def __init__(self, rule: str, expected: int, found: int, partial: BackupStats):
        super().__init__(f"{rule} pattern expected {expected} groups, got {found}")
        self.rule = rule
        self.expected = expected
        self.found = found
        self.partial = partial


def convert_size(amount: int, unit: str) -> int:
    """
    Scale an amount by the binary multiplier of its unit.

    Unknown units (including plain "B") yield 0.
    """
    return amount * UNIT_MULTIPLIERS.get(unit, 0)


def _scaled_size(value: str, unit: str) -> int:
    # restic renders sizes with three fractional digits and no grouping
    # separator, so the value is taken in thousandths and truncated.
    return convert_size(int(float(value) * 1000), unit)


def _first_match(rule: ExtractionRule, text: str, partial: BackupStats) -> List[str]:
    match = rule.pattern.search(text)
    if match is None:
        raise StatsParseError(rule.name, rule.groups, 0, partial)

    groups = [match.group(0), *match.groups()]
    if len(groups) != rule.groups:
        raise StatsParseError(rule.name, rule.groups, len(groups), partial)
    return groups


def parse_backup_output(text: str) -> BackupStats:
    """
    Extract file and byte counts from the stdout of ``restic backup``.

    Args:
        text: Complete captured standard output of one backup run

    Returns:
        Statistics with every field except ``duration`` filled in

    Raises:
        StatsParseError: If one of the summary lines is missing. The
            fields filled before the failing line are kept on ``partial``.
    """
    result = BackupStats()

    _, new, changed, unmodified = _first_match(FILES_RULE, text, result)
    result.files_new = int(new)
    result.files_changed = int(changed)
    result.files_unmodified = int(unmodified)

    _, amount, unit = _first_match(ADDED_RULE, text, result)
    result.bytes_added = _scaled_size(amount, unit)

    _, processed, amount, unit = _first_match(PROCESSED_RULE, text, result)
    result.files_processed = int(processed)
    result.bytes_processed = _scaled_size(amount, unit)

    return result
