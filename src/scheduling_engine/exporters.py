"""Export functionality for scheduling results."""

import csv
import json
from abc import ABC, abstractmethod
from pathlib import Path

import pandas as pd

from .models import ScheduledClass
from .results import SchedulingResult


def _class_row(scheduled: ScheduledClass) -> dict:
    return {
        "id": scheduled.id,
        "course_id": scheduled.course_id,
        "teacher_id": scheduled.teacher_id,
        "class_type": scheduled.class_type.value,
        "status": scheduled.status.value,
        "start_time": scheduled.start_time.isoformat(),
        "end_time": scheduled.end_time.isoformat(),
        "location": scheduled.time_slot.location or "",
        "students": "; ".join(scheduled.student_ids),
        "enrollment": scheduled.enrollment,
        "capacity": scheduled.time_slot.capacity.max_students,
        "content": "; ".join(scheduled.content_ids),
        "confidence_score": round(scheduled.confidence_score, 4),
        "rationale": scheduled.rationale,
    }


class BaseExporter(ABC):
    """Base class for exporters."""

    @abstractmethod
    def export(self, result: SchedulingResult, output_path: str | Path) -> None:
        """Export scheduling result to file.

        Args:
            result: SchedulingResult to export
            output_path: Path to output file or directory
        """
        pass


class JSONExporter(BaseExporter):
    """Export to JSON format."""

    def __init__(self, indent: int = 2, ensure_ascii: bool = False):
        """Initialize exporter.

        Args:
            indent: JSON indentation level
            ensure_ascii: If False, allows non-ASCII characters
        """
        self.indent = indent
        self.ensure_ascii = ensure_ascii

    def export(self, result: SchedulingResult, output_path: str | Path) -> None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(
                result.to_dict(),
                f,
                indent=self.indent,
                ensure_ascii=self.ensure_ascii,
            )


class CSVExporter(BaseExporter):
    """Export to CSV format (multiple files)."""

    def export(self, result: SchedulingResult, output_path: str | Path) -> None:
        """Export scheduling result to CSV files.

        Creates up to four files:
        - classes.csv: Scheduled classes
        - conflicts.csv: Reported conflicts
        - recommendations.csv: Recommendations for manual follow-up
        - summary.csv: Status and metrics

        Files whose section is empty are not written.

        Args:
            result: SchedulingResult to export
            output_path: Path to output directory
        """
        output_dir = Path(output_path)
        output_dir.mkdir(parents=True, exist_ok=True)

        self._write_csv(output_dir / "classes.csv", [_class_row(c) for c in result.scheduled_classes])
        self._export_conflicts(result, output_dir / "conflicts.csv")
        self._export_recommendations(result, output_dir / "recommendations.csv")
        self._export_summary(result, output_dir / "summary.csv")

    def _export_conflicts(self, result: SchedulingResult, output_path: Path) -> None:
        rows = []
        for conflict in result.conflicts:
            rows.append(
                {
                    "id": conflict.id,
                    "type": conflict.type.value,
                    "severity": conflict.severity.value,
                    "description": conflict.description,
                    "classes": "; ".join(conflict.class_ids),
                    "students": "; ".join(conflict.student_ids),
                    "teacher_id": conflict.teacher_id or "",
                    "resolutions": "; ".join(r.type.value for r in conflict.resolutions),
                }
            )

        self._write_csv(output_path, rows)

    def _export_recommendations(self, result: SchedulingResult, output_path: Path) -> None:
        rows = []
        for recommendation in result.recommendations:
            rows.append(
                {
                    "id": recommendation.id,
                    "type": recommendation.type.value,
                    "priority": recommendation.priority.value,
                    "confidence_score": round(recommendation.confidence_score, 4),
                    "action": recommendation.action.type.value,
                    "students": "; ".join(recommendation.student_ids),
                    "description": recommendation.description,
                }
            )

        self._write_csv(output_path, rows)

    def _export_summary(self, result: SchedulingResult, output_path: Path) -> None:
        rows = [
            {"metric": "request_id", "value": result.request_id},
            {"metric": "status", "value": result.status.value},
            {"metric": "success", "value": result.success},
            {"metric": "error", "value": result.error.message if result.error else ""},
        ]
        rows.extend({"metric": k, "value": v} for k, v in result.metrics.to_dict().items())

        self._write_csv(output_path, rows)

    def _write_csv(self, output_path: Path, rows: list[dict]) -> None:
        """Write rows to CSV file."""
        if not rows:
            return

        with open(output_path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=rows[0].keys())
            writer.writeheader()
            writer.writerows(rows)


class ExcelExporter(BaseExporter):
    """Export to Excel format (single workbook with multiple sheets)."""

    def export(self, result: SchedulingResult, output_path: str | Path) -> None:
        """Export scheduling result to Excel file.

        Creates workbook with sheets:
        - Classes: Scheduled classes
        - Conflicts: Reported conflicts
        - Recommendations: Recommendations for manual follow-up
        - Summary: Status and metrics

        Args:
            result: SchedulingResult to export
            output_path: Path to output Excel file
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            self._export_classes_sheet(result, writer)
            self._export_conflicts_sheet(result, writer)
            self._export_recommendations_sheet(result, writer)
            self._export_summary_sheet(result, writer)

    def _export_classes_sheet(self, result: SchedulingResult, writer: pd.ExcelWriter) -> None:
        columns = ["ID", "Course", "Teacher", "Type", "Status", "Start", "End", "Students", "Content", "Confidence"]
        rows = [
            {
                "ID": c.id,
                "Course": c.course_id,
                "Teacher": c.teacher_id,
                "Type": c.class_type.value,
                "Status": c.status.value,
                "Start": c.start_time.strftime("%Y-%m-%d %H:%M"),
                "End": c.end_time.strftime("%Y-%m-%d %H:%M"),
                "Students": ", ".join(c.student_ids),
                "Content": ", ".join(c.content_ids),
                "Confidence": round(c.confidence_score, 3),
            }
            for c in result.scheduled_classes
        ]
        df = pd.DataFrame(rows) if rows else pd.DataFrame(columns=columns)
        df.to_excel(writer, sheet_name="Classes", index=False)

    def _export_conflicts_sheet(self, result: SchedulingResult, writer: pd.ExcelWriter) -> None:
        rows = [
            {
                "ID": c.id,
                "Type": c.type.value,
                "Severity": c.severity.value,
                "Description": c.description,
                "Students": ", ".join(c.student_ids),
            }
            for c in result.conflicts
        ]
        df = (
            pd.DataFrame(rows)
            if rows
            else pd.DataFrame(columns=["ID", "Type", "Severity", "Description", "Students"])
        )
        df.to_excel(writer, sheet_name="Conflicts", index=False)

    def _export_recommendations_sheet(
        self, result: SchedulingResult, writer: pd.ExcelWriter
    ) -> None:
        rows = [
            {
                "Type": r.type.value,
                "Priority": r.priority.value,
                "Confidence": round(r.confidence_score, 3),
                "Action": r.action.type.value,
                "Description": r.description,
            }
            for r in result.recommendations
        ]
        df = (
            pd.DataFrame(rows)
            if rows
            else pd.DataFrame(columns=["Type", "Priority", "Confidence", "Action", "Description"])
        )
        df.to_excel(writer, sheet_name="Recommendations", index=False)

    def _export_summary_sheet(self, result: SchedulingResult, writer: pd.ExcelWriter) -> None:
        rows = [
            {"Metric": "Request", "Value": result.request_id},
            {"Metric": "Status", "Value": result.status.value},
            {"Metric": "Success", "Value": result.success},
            {"Metric": "Error", "Value": result.error.message if result.error else ""},
        ]
        rows.extend(
            {"Metric": key.replace("_", " ").title(), "Value": value}
            for key, value in result.metrics.to_dict().items()
        )

        df = pd.DataFrame(rows)
        df.to_excel(writer, sheet_name="Summary", index=False)


def get_exporter(format_type: str) -> BaseExporter:
    """Get appropriate exporter for format type.

    Args:
        format_type: Export format ('json', 'csv', 'excel')

    Returns:
        Exporter instance

    Raises:
        ValueError: If format type is not supported
    """
    exporters = {
        "json": JSONExporter,
        "csv": CSVExporter,
        "excel": ExcelExporter,
    }

    if format_type not in exporters:
        raise ValueError(
            f"Unsupported format: {format_type}. Supported: {', '.join(exporters.keys())}"
        )

    return exporters[format_type]()
