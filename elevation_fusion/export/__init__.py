"""Export module."""

from .csv_exporter import CsvExporter, CSV_HEADER

__all__ = ["CsvExporter", "CSV_HEADER"]
