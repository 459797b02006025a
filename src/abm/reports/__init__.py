"""Reports module for device inventory exports.

This module provides:
- JSON dumps of enriched devices
- CSV exports with AppleCare list fields joined by " | "
- CSV re-parsing and group-by summaries
- Formula injection protection on CSV cells
"""

from .exporter import (
    BASE_COLUMNS,
    COVERAGE_COLUMNS,
    LIST_SEPARATOR,
    DeviceExporter,
    DeviceSummary,
    activity_report_filename,
    export_filename,
)

__all__ = [
    "DeviceExporter",
    "DeviceSummary",
    "BASE_COLUMNS",
    "COVERAGE_COLUMNS",
    "LIST_SEPARATOR",
    "export_filename",
    "activity_report_filename",
]
