"""pdf_export.py — Circuit breaker detail sheet rendered with reportlab."""
from __future__ import annotations

import io
from typing import Any, Dict, List, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

__all__ = [
    "flatten_fields",
    "pdf_filename",
    "render_cb_details",
]


def pdf_filename(switchgear_id: Any, cb_id: Any) -> str:
    return f"CB_{cb_id}_{switchgear_id}_Details.pdf"


def flatten_fields(data: Dict[str, Any], indent: int = 0) -> List[Tuple[str, str]]:
    """(label, value) rows; nested objects become an indented heading row followed by their fields."""
    rows: List[Tuple[str, str]] = []
    pad = " " * (indent * 4)
    for key, value in data.items():
        if isinstance(value, dict):
            rows.append((f"{pad}{key}", ""))
            rows.extend(flatten_fields(value, indent + 1))
        elif isinstance(value, list):
            rows.append((f"{pad}{key}", ""))
            for pos, entry in enumerate(value, start=1):
                if isinstance(entry, dict):
                    rows.append((f"{pad}    [{pos}]", ""))
                    rows.extend(flatten_fields(entry, indent + 2))
                else:
                    rows.append((f"{pad}    [{pos}]", str(entry)))
        else:
            rows.append((f"{pad}{key}", "" if value is None else str(value)))
    return rows


def _label_markup(label: str) -> str:
    stripped = label.lstrip(" ")
    return "&nbsp;" * (len(label) - len(stripped)) + escape(stripped)


def render_cb_details(switchgear_id: Any, cb: Dict[str, Any]) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter, topMargin=0.5 * inch, bottomMargin=0.5 * inch)
    styles = getSampleStyleSheet()
    story = [
        Paragraph("<b>Circuit Breaker Details</b>", styles["Title"]),
        Spacer(1, 0.1 * inch),
        Paragraph(
            f"<b>Switchgear ID:</b> {escape(str(switchgear_id))}<br/>"
            f"<b>Circuit Breaker ID:</b> {escape(str(cb.get('id', '')))}",
            styles["Normal"],
        ),
        Spacer(1, 0.2 * inch),
    ]

    cell = styles["BodyText"]
    data = [[Paragraph(_label_markup(label), cell), Paragraph(escape(value), cell)] for label, value in flatten_fields(cb)]
    if data:
        table = Table(data, colWidths=[2.3 * inch, 4.5 * inch])
        table.setStyle(
            TableStyle(
                [
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("BACKGROUND", (0, 0), (0, -1), colors.Color(0.9, 0.9, 0.9)),
                    ("FONTSIZE", (0, 0), (-1, -1), 9),
                    ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                    ("LEFTPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.append(table)

    doc.build(story)
    return buffer.getvalue()
