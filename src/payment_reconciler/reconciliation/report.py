"""Report generation for sync results."""

import json
import csv
import io
from datetime import datetime

from .models import SyncReport, SyncStatus, DiscrepancyType


class ReportGenerator:
    """Generator for sync reports in various formats."""

    def __init__(self, report: SyncReport):
        """Initialize the report generator.

        Args:
            report: The sync report to generate output from.
        """
        self.report = report

    def to_json(self, include_details: bool = True, indent: int = 2) -> str:
        """Generate JSON representation of the report.

        Args:
            include_details: If True, include every result. If False, only summary.
            indent: JSON indentation level.

        Returns:
            JSON string representation of the report.
        """
        if include_details:
            data = self.report.to_full_dict()
        else:
            data = self.report.to_summary_dict()

        def json_serializer(obj):
            if isinstance(obj, datetime):
                return obj.isoformat()
            if isinstance(obj, (DiscrepancyType, SyncStatus)):
                return obj.value
            raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

        return json.dumps(data, indent=indent, default=json_serializer)

    def to_csv(self) -> str:
        """Generate CSV with one row per result, or per discrepancy when present.

        Returns:
            CSV string with a header row.
        """
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow([
            "order_id", "sync_status", "payment_id", "local_status", "gateway_status",
            "discrepancy_type", "field_name", "local_value", "gateway_value", "error_message",
        ])

        for result in self.report.results:
            base = [
                result.order_id,
                result.status.value,
                result.payment_id or "",
                result.local_status or "",
                result.gateway_status or "",
            ]
            if not result.discrepancies:
                writer.writerow(base + ["", "", "", "", result.error_message or ""])
                continue
            for d in result.discrepancies:
                writer.writerow(base + [
                    d.discrepancy_type.value,
                    d.field_name,
                    str(d.local_value),
                    str(d.gateway_value),
                    result.error_message or "",
                ])

        return output.getvalue()

    def to_summary_text(self) -> str:
        """Generate a human-readable text summary of the report.

        Returns:
            Formatted text summary, listing results that need attention.
        """
        summary = self.report.to_summary_dict()
        stats = summary["statistics"]

        lines = [
            "=" * 60,
            "PAYMENT SYNC REPORT",
            "=" * 60,
            f"Report ID: {summary['id']}",
            f"Status Filter: {summary['status_filter'] or 'all'}",
            "",
            "Time Range:",
            f"  Start: {summary['start_time'] or 'N/A'}",
            f"  End: {summary['end_time'] or 'N/A'}",
            "",
            "Statistics:",
            f"  Total Payments: {stats['total']}",
            f"  Unchanged: {stats['unchanged']}",
            f"  Updated: {stats['updated']}",
            f"  Unresolved: {stats['unresolved']}",
            f"  Failed: {stats['failed']}",
            f"  Discrepancies: {stats['discrepancies']}",
            "",
            f"Started At: {summary['started_at']}",
            f"Completed At: {summary['completed_at'] or 'N/A'}",
        ]

        issues = [
            r for r in self.report.results
            if r.status in (SyncStatus.UNRESOLVED, SyncStatus.FAILED)
        ]
        if issues:
            lines.extend(["", "Needs Attention:"])
            for r in issues:
                lines.append(f"  {r.order_id} [{r.status.value}]: {r.error_message}")

        lines.append("=" * 60)

        return "\n".join(lines)
