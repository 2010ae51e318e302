from __future__ import annotations

import io
from datetime import UTC, datetime
from xml.sax.saxutils import escape

from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer


def _styles():
    styles = getSampleStyleSheet()
    styles.add(
        ParagraphStyle(
            name="CertificateTitle",
            fontName="Helvetica-Bold",
            fontSize=30,
            leading=36,
            alignment=TA_CENTER,
            spaceAfter=30,
        )
    )
    styles.add(
        ParagraphStyle(
            name="CertificateText",
            fontName="Helvetica",
            fontSize=16,
            leading=22,
            alignment=TA_CENTER,
            spaceAfter=12,
        )
    )
    styles.add(
        ParagraphStyle(
            name="CertificateName",
            fontName="Helvetica-Bold",
            fontSize=24,
            leading=30,
            alignment=TA_CENTER,
            spaceAfter=20,
        )
    )
    return styles


def render_certificate(*, student_name: str, course_title: str, issued_at: int) -> bytes:
    """Render a one-page landscape completion certificate and return the PDF bytes.

    Blocking (reportlab is pure CPU work); async callers should run it in
    a thread.
    """
    issue_date = datetime.fromtimestamp(issued_at, UTC).strftime("%B %d, %Y")
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=landscape(letter),
        rightMargin=72,
        leftMargin=72,
        topMargin=96,
        bottomMargin=72,
        title="Certificate of Completion",
    )
    styles = _styles()
    doc.build(
        [
            Paragraph("Certificate of Completion", styles["CertificateTitle"]),
            Paragraph("This certifies that", styles["CertificateText"]),
            Paragraph(escape(student_name), styles["CertificateName"]),
            Paragraph("has successfully completed the course", styles["CertificateText"]),
            Paragraph(escape(course_title), styles["CertificateName"]),
            Spacer(1, 24),
            Paragraph(f"Issued on: {issue_date}", styles["CertificateText"]),
        ]
    )
    return buffer.getvalue()
