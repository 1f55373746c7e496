"""Plain-text and CSV export files."""

import csv
import io
import logging
import os
import re
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List

from .helpers import utcnow

logger = logging.getLogger(__name__)


def sanitize_filename(filename: str) -> str:
    """Sanitize filename for safe storage."""
    filename = os.path.basename(filename)
    filename = re.sub(r"[^\w\-.]", "_", filename)
    if len(filename) > 100:
        name, ext = os.path.splitext(filename)
        filename = name[:96] + ext
    return filename


class ExportService:
    """Renders export documents and stores them under the export directory."""

    def __init__(self, export_dir: str = "./exports"):
        self.export_dir = Path(export_dir)

    def write(self, prefix: str, content: str, extension: str = "txt") -> Path:
        self.export_dir.mkdir(parents=True, exist_ok=True)
        stamp = utcnow().strftime("%Y%m%d_%H%M%S")
        path = self.export_dir / sanitize_filename(f"{prefix}_{stamp}.{extension}")
        path.write_text(content, encoding="utf-8")
        logger.info(f"Wrote export {path}")
        return path

    def cleanup(self, max_age_seconds: int) -> int:
        """Delete export files older than ``max_age_seconds``."""
        if not self.export_dir.exists():
            return 0
        cutoff = time.time() - max_age_seconds
        removed = 0
        for path in self.export_dir.iterdir():
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        if removed:
            logger.info(f"Removed {removed} old export files")
        return removed

    # Renderers

    @staticmethod
    def grade_report(student, grades_by_subject: Dict[str, List[Any]]) -> str:
        lines = [
            "GRADE REPORT",
            f"Student: {student.name} ({student.student_id})",
            f"Class: {student.class_name}",
            f"Generated: {utcnow():%Y-%m-%d %H:%M} UTC",
            "",
        ]
        if not grades_by_subject:
            lines.append("No grades recorded.")
        for subject, grades in grades_by_subject.items():
            lines.append(f"[{subject}]")
            for grade in grades:
                line = f"  {grade.created_at:%Y-%m-%d}  {grade.score:>3}  {grade.purpose}"
                if grade.comments:
                    line += f" - {grade.comments}"
                lines.append(line)
            average = sum(g.score for g in grades) / len(grades)
            lines.append(f"  Average: {average:.1f}")
            lines.append("")
        return "\n".join(lines)

    @staticmethod
    def attendance_csv(registers: Iterable[Any]) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["date", "class", "student_id", "name", "status"])
        for register in registers:
            for record in register.records or []:
                writer.writerow([
                    register.date.isoformat(),
                    register.class_name,
                    record.get("student_id"),
                    record.get("name"),
                    record.get("status"),
                ])
        return buffer.getvalue()

    @staticmethod
    def activity_log(entries: Iterable[Dict[str, Any]], title: str = "ADMIN ACTIVITY LOG") -> str:
        lines = [title, f"Generated: {utcnow():%Y-%m-%d %H:%M} UTC", ""]
        for entry in entries:
            who = f"{entry.get('admin_name', '')} ({entry['admin_id']}) " if "admin_id" in entry else ""
            lines.append(f"{entry['at']}  {who}{entry['action']}: {entry.get('detail', '')}")
        return "\n".join(lines)

    @staticmethod
    def class_deletion_log(class_name: str, removed: List[Dict[str, Any]], actor_id: int) -> str:
        lines = [
            "CLASS DELETION LOG",
            f"Class: {class_name}",
            f"Deleted by: {actor_id}",
            f"At: {utcnow():%Y-%m-%d %H:%M:%S} UTC",
            f"Students removed: {len(removed)}",
            "",
        ]
        for item in removed:
            lines.append(f"{item['student_id']}  {item['name']}  parent={item.get('parent_id') or 'N/A'}")
        return "\n".join(lines)
