"""Report generation service."""

import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from fpdf import FPDF

from ..config import REPORTS_DIR
from ..models.violation import StudentViolationSummary
from ..utils.time_utils import get_formatted_time, utcnow

logger = logging.getLogger(__name__)

COLUMNS = [
    ("Student", 40),
    ("Exam", 40),
    ("Total", 16),
    ("Open", 16),
    ("Risk", 20),
    ("Flag", 14),
    ("Last violation", 44),
]


class ViolationReportPDF(FPDF):

    def header(self) -> None:
        self.set_font("Helvetica", "B", 16)
        self.cell(0, 10, "Exam Violation Risk Report", new_x="LMARGIN", new_y="NEXT", align="C")
        self.ln(4)

    def add_summary_line(self, key: str, value: Any) -> None:
        self.set_font("Helvetica", "B", 11)
        self.cell(60, 8, str(key))
        self.set_font("Helvetica", "", 11)
        self.cell(0, 8, str(value), new_x="LMARGIN", new_y="NEXT")

    def table_row(self, cols: List[str], bold: bool = False) -> None:
        self.set_font("Helvetica", "B" if bold else "", 9)
        for text, (_, width) in zip(cols, COLUMNS):
            # Encode to latin-1 to handle PDF encoding
            safe = str(text).encode("latin-1", "replace").decode("latin-1")
            self.cell(width, 8, safe[:28], border=1)
        self.ln(8)


def summary_to_dict(summary: StudentViolationSummary) -> Dict[str, Any]:
    return {
        "student_id": summary.student_id,
        "student_name": summary.student_name,
        "exam_id": summary.exam_id,
        "exam_title": summary.exam_title,
        "session_id": summary.session_id,
        "total_violations": summary.total_violations,
        "resolved_violations": summary.resolved_violations,
        "unresolved_violations": summary.unresolved_violations,
        "risk_level": summary.risk_level.value,
        "auto_flagged": summary.auto_flagged,
        "violation_types": summary.violation_types,
        "first_violation_time": get_formatted_time(summary.first_violation_time),
        "last_violation_time": get_formatted_time(summary.last_violation_time),
    }


def save_json_report(summaries: List[StudentViolationSummary], path: str,
                     generated_at: Optional[datetime] = None) -> str:
    """Saves the summaries to a JSON file."""
    export_data = {
        "generated_at": get_formatted_time(generated_at or utcnow()),
        "students": len(summaries),
        "auto_flagged": sum(1 for s in summaries if s.auto_flagged),
        "summaries": [summary_to_dict(s) for s in summaries],
    }
    with open(path, "w") as f:
        json.dump(export_data, f, indent=2)
    logger.info(f"[JSON SAVED] {path}")
    return path


def generate_violation_report(summaries: List[StudentViolationSummary],
                              reports_dir: str = REPORTS_DIR) -> str:
    """
    Generate a PDF report of per-student violation summaries.

    Args:
        summaries: Summaries to include, in the order they should appear
        reports_dir: Directory the PDF and its JSON twin are written to

    Returns:
        Path to the generated PDF file
    """
    now = utcnow()
    stamp = now.strftime("%Y%m%d_%H%M%S")

    pdf = ViolationReportPDF()
    pdf.add_page()
    pdf.add_summary_line("Generated:", get_formatted_time(now) + " UTC")
    pdf.add_summary_line("Students:", len(summaries))
    pdf.add_summary_line("Auto-flagged:", sum(1 for s in summaries if s.auto_flagged))
    pdf.add_summary_line("Unresolved violations:", sum(s.unresolved_violations for s in summaries))
    pdf.ln(6)

    pdf.table_row([name for name, _ in COLUMNS], bold=True)
    for summary in summaries:
        pdf.table_row([
            summary.student_name,
            summary.exam_title,
            summary.total_violations,
            summary.unresolved_violations,
            summary.risk_level.value,
            "yes" if summary.auto_flagged else "",
            get_formatted_time(summary.last_violation_time),
        ])

    os.makedirs(reports_dir, exist_ok=True)
    report_path = os.path.join(reports_dir, f"violations_{stamp}.pdf")
    pdf.output(report_path)
    logger.info(f"[REPORT GENERATED] {report_path}")

    save_json_report(summaries, os.path.join(reports_dir, f"violations_{stamp}.json"), now)
    return report_path
