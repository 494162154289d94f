"""CSV export of estimated angle series."""

import csv
import logging
import time
from pathlib import Path
from typing import IO, Optional, Sequence, Union

from ..core.errors import ExportFailure
from ..core.types import EstimatedSample

logger = logging.getLogger(__name__)

CSV_HEADER = ("Timestamp (ns)", "AngleAlgo1 (degrees)", "AngleAlgo2 (degrees)")

Destination = Union[str, Path, IO[str]]


class CsvExporter:
    """Writes a sample series as CSV, one row per sample."""

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        """Initialize exporter.

        Args:
            directory: Where ``default_destination`` puts new files.
        """
        self._directory = Path(directory) if directory is not None else Path("exports")

    def default_destination(self) -> Path:
        """Fresh timestamped file path in the export directory."""
        stamp = time.strftime("%Y%m%d_%H%M%S")
        return self._directory / f"elevation_{stamp}.csv"

    def write(self, samples: Sequence[EstimatedSample], destination: Destination) -> int:
        """Write samples to a file path or an open text stream.

        Args:
            samples: Ordered series to write.
            destination: File path, or a writable text stream which is
                left open.

        Returns:
            Number of rows written.

        Raises:
            ExportFailure: If the destination cannot be written.
        """
        try:
            if isinstance(destination, (str, Path)):
                path = Path(destination)
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, "w", newline="", encoding="utf-8") as f:
                    self._write_rows(samples, f)
                logger.info("Exported %d samples to %s", len(samples), path)
            else:
                self._write_rows(samples, destination)
                logger.info("Exported %d samples to stream", len(samples))
        except (OSError, ValueError, TypeError, csv.Error) as e:
            raise ExportFailure(f"Export failed: {e}") from e
        return len(samples)

    @staticmethod
    def _write_rows(samples: Sequence[EstimatedSample], f: IO[str]) -> None:
        writer = csv.writer(f, lineterminator="\n")
        writer.writerow(CSV_HEADER)
        for s in samples:
            writer.writerow((s.timestamp, s.angle_a, s.angle_b))
