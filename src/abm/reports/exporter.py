"""Device export in JSON and CSV form.

Features:
- Structured JSON dump of enriched devices (assignment and coverage included)
- Flat CSV with one row per device; AppleCare list fields joined with " | "
- CSV re-parsing back to rows, splitting the joined list fields
- Group-by summaries (model, status, product family) and per-device listings
- Spreadsheet formula injection protection on CSV cells
- Serialization off the event loop, file writes through aiofiles
"""

import csv
import io
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import anyio

from ..sync.domain.entities import NO_END_DATE, UNASSIGNED_LABEL, DeviceRecord

logger = logging.getLogger(__name__)

LIST_SEPARATOR = " | "

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

BASE_COLUMNS = [
    "ID",
    "Serial Number",
    "Model",
    "Product Family",
    "Product Type",
    "Status",
    "Color",
    "Capacity",
    "Added to Org",
    "Assigned MDM Server",
    "WiFi MAC",
    "Org Release Date",
]

COVERAGE_COLUMNS = [
    "AppleCare Descriptions",
    "AppleCare Statuses",
    "AppleCare Start Dates",
    "AppleCare End Dates",
    "AppleCare Payment Types",
]

# CSV column -> CoverageEntry attribute
_COVERAGE_FIELDS = {
    "AppleCare Descriptions": "description",
    "AppleCare Statuses": "status",
    "AppleCare Start Dates": "start_date_time",
    "AppleCare End Dates": "end_date_time",
    "AppleCare Payment Types": "payment_type",
}


def export_filename(extension: str, now: datetime | None = None) -> str:
    """``devices_YYYYmmdd_HHMMSS.<extension>``"""
    now = now or datetime.now()
    return f"devices_{now.strftime(TIMESTAMP_FORMAT)}.{extension}"


def activity_report_filename(activity_id: str, now: datetime | None = None) -> str:
    """``activity_<id>_YYYYmmdd_HHMMSS.csv``"""
    now = now or datetime.now()
    return f"activity_{activity_id}_{now.strftime(TIMESTAMP_FORMAT)}.csv"


@dataclass
class DeviceSummary:
    """Counts of exported devices, each group sorted by count descending."""

    total: int = 0
    by_model: list[tuple[str, int]] = field(default_factory=list)
    by_status: list[tuple[str, int]] = field(default_factory=list)
    by_product_family: list[tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_model": dict(self.by_model),
            "by_status": dict(self.by_status),
            "by_product_family": dict(self.by_product_family),
        }


class DeviceExporter:
    """Serializes enriched device records and writes them to the output directory.

    Example:
        exporter = DeviceExporter(config.output_dir)
        path = await exporter.write_csv(result.records, include_coverage=True)
    """

    # Characters that could trigger spreadsheet formula interpretation
    FORMULA_CHARS = ("=", "+", "-", "@", "\t", "\r", "\n")

    def __init__(self, output_dir: str | Path = "."):
        self.output_dir = Path(output_dir)

    # ----------------------------------------
    # Cell Sanitization
    # ----------------------------------------

    @classmethod
    def sanitize_cell_value(cls, value: Any) -> Any:
        """Sanitize a cell value to prevent formula injection.

        Args:
            value: The value to sanitize

        Returns:
            Sanitized value safe for spreadsheet cells
        """
        if value is None:
            return ""

        if isinstance(value, str):
            if value and value[0] in cls.FORMULA_CHARS:
                # Prefix with apostrophe to force text interpretation
                return f"'{value}"
            if "=" in value and re.match(r".*=\s*[A-Za-z]+\(", value):
                return f"'{value}"
            if value.startswith("'"):
                # Literal leading apostrophe: escape it
                return f"'{value}"
            return value

        return value

    @classmethod
    def unsanitize_cell_value(cls, value: str) -> str:
        """Reverse ``sanitize_cell_value`` for a string read back from CSV.

        Exact for any string: a leading apostrophe in the original value is
        itself escaped on the way out.
        """
        if value.startswith("'") and cls.sanitize_cell_value(value[1:]) == value:
            return value[1:]
        return value

    # ----------------------------------------
    # JSON
    # ----------------------------------------

    @staticmethod
    def record_to_dict(record: DeviceRecord) -> dict[str, Any]:
        """Structured form of a record, close to the API's own resource shape."""
        return {
            "id": record.id,
            "type": "orgDevices",
            "attributes": dict(record.raw_data),
            "assignedMdmServerId": record.assigned_server.id,
            "assignedMdmServerName": record.assigned_server.name,
            "appleCareCoverage": [entry.to_dict() for entry in record.coverage_entries],
        }

    def to_json(self, records: list[DeviceRecord]) -> str:
        return json.dumps([self.record_to_dict(r) for r in records], indent=2)

    # ----------------------------------------
    # CSV
    # ----------------------------------------

    @staticmethod
    def columns(include_coverage: bool) -> list[str]:
        return BASE_COLUMNS + (COVERAGE_COLUMNS if include_coverage else [])

    @staticmethod
    def record_to_row(record: DeviceRecord, include_coverage: bool = False) -> dict[str, Any]:
        """Flatten a record into CSV columns; coverage columns hold lists."""
        row: dict[str, Any] = {
            "ID": record.id,
            "Serial Number": record.serial_number,
            "Model": record.model,
            "Product Family": record.product_family,
            "Product Type": record.product_type,
            "Status": record.status,
            "Color": record.color,
            "Capacity": record.capacity,
            "Added to Org": record.added_to_org_date_time,
            "Assigned MDM Server": record.assigned_server.name or UNASSIGNED_LABEL,
            "WiFi MAC": record.wifi_mac_address,
            "Org Release Date": record.released_from_org_date_time,
        }
        if include_coverage:
            for column, attribute in _COVERAGE_FIELDS.items():
                row[column] = [getattr(entry, attribute) for entry in record.coverage_entries]
        return row

    def to_csv(self, records: list[DeviceRecord], include_coverage: bool = False) -> str:
        """Render records as CSV text (header row always present)."""
        rows = []
        for record in records:
            row = self.record_to_row(record, include_coverage)
            for column in COVERAGE_COLUMNS:
                if column in row:
                    row[column] = LIST_SEPARATOR.join(row[column])
            rows.append(row)
        return self._dict_to_csv(rows, fieldnames=self.columns(include_coverage))

    def _dict_to_csv(
        self,
        data: list[dict[str, Any]],
        fieldnames: list[str],
    ) -> str:
        """Convert list of dicts to CSV string.

        Args:
            data: List of dictionaries
            fieldnames: Column names (order and selection)

        Returns:
            CSV string
        """
        output = io.StringIO()
        writer = csv.DictWriter(
            output,
            fieldnames=fieldnames,
            extrasaction="ignore",
            quoting=csv.QUOTE_MINIMAL,
        )
        writer.writeheader()

        for row in data:
            sanitized_row = {
                k: self.sanitize_cell_value(v) for k, v in row.items()
            }
            writer.writerow(sanitized_row)

        return output.getvalue()

    def parse_csv(self, text: str) -> list[dict[str, Any]]:
        """Parse CSV text produced by ``to_csv`` back into rows.

        Coverage columns are split on the list separator. Every coverage
        column of a row holds one value per entry, so an empty cell next to
        non-empty ones stands for that many empty values; a row whose
        coverage cells are all empty has no entries.
        """
        reader = csv.DictReader(io.StringIO(text))
        rows = []
        for raw_row in reader:
            row: dict[str, Any] = {}
            for column, value in raw_row.items():
                value = self.unsanitize_cell_value(value or "")
                if column in _COVERAGE_FIELDS:
                    row[column] = value.split(LIST_SEPARATOR) if value else []
                else:
                    row[column] = value

            entry_count = max(
                (len(row[column]) for column in _COVERAGE_FIELDS if column in row),
                default=0,
            )
            for column in _COVERAGE_FIELDS:
                if column in row and not row[column]:
                    row[column] = [""] * entry_count
            rows.append(row)
        return rows

    # ----------------------------------------
    # Summary
    # ----------------------------------------

    @staticmethod
    def summarize(records: list[DeviceRecord]) -> DeviceSummary:
        """Group-by counts, most common first (ties by name)."""

        def count(values: list[str]) -> list[tuple[str, int]]:
            counts = Counter(value or "Unknown" for value in values)
            return sorted(counts.items(), key=lambda item: (-item[1], item[0]))

        return DeviceSummary(
            total=len(records),
            by_model=count([r.model for r in records]),
            by_status=count([r.status for r in records]),
            by_product_family=count([r.product_family for r in records]),
        )

    @staticmethod
    def format_summary(summary: DeviceSummary) -> str:
        lines = [f"Total devices exported: {summary.total}"]
        for title, groups in (
            ("Devices by Model", summary.by_model),
            ("Devices by Status", summary.by_status),
            ("Devices by Product Family", summary.by_product_family),
        ):
            if not groups:
                continue
            width = max(len(name) for name, _ in groups)
            lines.append("")
            lines.append(f"{title}:")
            lines.extend(f"  {name.ljust(width)}  {n}" for name, n in groups)
        return "\n".join(lines)

    @staticmethod
    def format_details(records: list[DeviceRecord], include_coverage: bool = False) -> str:
        """Per-device listing; the AppleCare block only when coverage was fetched."""

        def text(value: str) -> str:
            return value or "N/A"

        lines: list[str] = []
        for record in records:
            lines.append("")
            lines.append(f"Serial: {text(record.serial_number)}")
            lines.append(f"  Model:            {text(record.model)}")
            lines.append(f"  Family:           {text(record.product_family)}")
            lines.append(f"  Status:           {text(record.status)}")
            lines.append(f"  Color:            {text(record.color)}")
            lines.append(f"  Capacity:         {text(record.capacity)}")
            lines.append(f"  Added to Org:     {text(record.added_to_org_date_time)}")
            lines.append(f"  Assigned MDM:     {record.assigned_server.name or UNASSIGNED_LABEL}")
            lines.append(f"  WiFi MAC:         {text(record.wifi_mac_address)}")
            lines.append(f"  Org Release Date: {text(record.released_from_org_date_time)}")

            if not include_coverage:
                continue
            if not record.coverage_entries:
                lines.append("  AppleCare:        No coverage")
                continue
            lines.append("  AppleCare:")
            for entry in record.coverage_entries:
                lines.append(f"    - {text(entry.description)}")
                lines.append(f"      Status:   {text(entry.status)}")
                lines.append(f"      Start:    {text(entry.start_date_time)}")
                lines.append(f"      End:      {entry.end_date_time or NO_END_DATE}")
                lines.append(f"      Payment:  {text(entry.payment_type)}")
        return "\n".join(lines)

    # ----------------------------------------
    # File Output
    # ----------------------------------------

    async def write_json(
        self,
        records: list[DeviceRecord],
        path: str | Path | None = None,
    ) -> Path:
        """Write the JSON dump; defaults to ``devices_<timestamp>.json``."""
        content = await anyio.to_thread.run_sync(lambda: self.to_json(records))
        return await self._write(path or self.output_dir / export_filename("json"), content)

    async def write_csv(
        self,
        records: list[DeviceRecord],
        include_coverage: bool = False,
        path: str | Path | None = None,
    ) -> Path:
        """Write the CSV export; defaults to ``devices_<timestamp>.csv``."""
        content = await anyio.to_thread.run_sync(
            lambda: self.to_csv(records, include_coverage)
        )
        return await self._write(path or self.output_dir / export_filename("csv"), content)

    def activity_report_path(self, activity_id: str) -> Path:
        return self.output_dir / activity_report_filename(activity_id)

    async def _write(self, path: str | Path, content: str) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        async with aiofiles.open(path, "w", newline="") as f:
            await f.write(content)

        logger.info(f"Saved export to {path}")
        return path
