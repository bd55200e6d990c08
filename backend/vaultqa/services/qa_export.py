"""
Flat CSV export of a Bank Report.
"""

import io
import csv

from vaultqa.services.item_model import BankReport

EXPORT_COLUMNS = ["id", "type", "score", "verdict", "diagnostic_count"]


def bank_report_to_csv(report: BankReport) -> str:
    """One row per item report, in scan order."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for item_report in report.item_reports:
        writer.writerow({
            "id": item_report.item_id,
            "type": item_report.item_type,
            "score": f"{item_report.score:.2f}",
            "verdict": item_report.verdict.value,
            "diagnostic_count": len(item_report.diagnostics),
        })
    return buffer.getvalue()
