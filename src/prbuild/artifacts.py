"""Build output validation."""

from __future__ import annotations

import logging
from pathlib import Path

from prbuild.errors import ValidationError

logger = logging.getLogger(__name__)


def validate_output_dir(output_dir: Path) -> int:
    """Check that the build produced a non-empty output directory.

    Returns:
        Number of top-level entries found.

    Raises:
        ValidationError: The directory is missing, not a directory, or empty.
            The message always carries the entry count found.
    """
    if not output_dir.is_dir():
        raise ValidationError(
            f"Build output directory {output_dir} does not exist (0 entries found)",
            entry_count=0,
        )

    entries = sorted(output_dir.iterdir())
    if not entries:
        raise ValidationError(
            f"Build output directory {output_dir} is empty (0 entries found)",
            entry_count=0,
        )

    logger.info("Build output %s contains %d entries", output_dir, len(entries))
    for entry in entries:
        logger.debug("  %s%s", entry.name, "/" if entry.is_dir() else "")
    return len(entries)
