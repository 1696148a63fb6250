"""Tests for sync report formatting."""

import csv
import io
import json
from datetime import datetime

import pytest

from payment_reconciler.reconciliation import (
    Discrepancy,
    DiscrepancyType,
    ReportGenerator,
    SyncReport,
    SyncResult,
    SyncStatus,
)


@pytest.fixture
def report():
    return SyncReport(
        id="report-1",
        status_filter="paid",
        start_time=datetime(2026, 1, 1),
        end_time=datetime(2026, 1, 31),
        completed_at=datetime(2026, 2, 1, 3, 0),
        results=[
            SyncResult(order_id="order-1", status=SyncStatus.UNCHANGED, payment_id="pay_1",
                       local_status="paid", gateway_status="paid"),
            SyncResult(
                order_id="order-2",
                status=SyncStatus.UPDATED,
                payment_id="pay_2",
                local_status="paid",
                gateway_status="cancelled",
                discrepancies=[
                    Discrepancy(order_id="order-2", payment_id="pay_2",
                                discrepancy_type=DiscrepancyType.STATUS_MISMATCH,
                                field_name="status", local_value="paid", gateway_value="cancelled"),
                    Discrepancy(order_id="order-2", payment_id="pay_2",
                                discrepancy_type=DiscrepancyType.AMOUNT_MISMATCH,
                                field_name="cancelled_amount", local_value=0, gateway_value=5000),
                ],
            ),
            SyncResult(order_id="order-3", status=SyncStatus.UNRESOLVED, local_status="paid",
                       error_message="No gateway payment found"),
        ],
    )


class TestSyncReport:

    def test_statistics(self, report):
        stats = report.to_summary_dict()["statistics"]
        assert stats == {
            "total": 3,
            "unchanged": 1,
            "updated": 1,
            "unresolved": 1,
            "failed": 0,
            "discrepancies": 2,
        }
        assert report.has_issues

    def test_no_issues_when_all_resolved(self):
        report = SyncReport(id="r", results=[
            SyncResult(order_id="o", status=SyncStatus.UPDATED),
        ])
        assert not report.has_issues


class TestReportGenerator:

    def test_json_with_details(self, report):
        data = json.loads(ReportGenerator(report).to_json())

        assert data["id"] == "report-1"
        assert data["start_time"] == "2026-01-01T00:00:00"
        assert len(data["results"]) == 3
        assert data["results"][1]["discrepancies"][0]["discrepancy_type"] == "status_mismatch"

    def test_json_summary_only(self, report):
        data = json.loads(ReportGenerator(report).to_json(include_details=False))
        assert "results" not in data
        assert data["statistics"]["total"] == 3

    def test_csv_one_row_per_discrepancy(self, report):
        rows = list(csv.DictReader(io.StringIO(ReportGenerator(report).to_csv())))

        assert [r["order_id"] for r in rows] == ["order-1", "order-2", "order-2", "order-3"]
        assert rows[1]["discrepancy_type"] == "status_mismatch"
        assert rows[2]["gateway_value"] == "5000"
        assert rows[3]["sync_status"] == "unresolved"
        assert rows[3]["error_message"] == "No gateway payment found"

    def test_text_summary(self, report):
        text = ReportGenerator(report).to_summary_text()

        assert "PAYMENT SYNC REPORT" in text
        assert "Status Filter: paid" in text
        assert "Total Payments: 3" in text
        assert "Needs Attention:" in text
        assert "order-3 [unresolved]: No gateway payment found" in text

    def test_text_summary_without_issues(self):
        report = SyncReport(id="r")
        text = ReportGenerator(report).to_summary_text()
        assert "Status Filter: all" in text
        assert "Needs Attention:" not in text
