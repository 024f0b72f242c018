"""Signal sources."""

from .csv_source import CsvSignalSource

__all__ = ["CsvSignalSource"]
