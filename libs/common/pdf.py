"""
PDF generation utilities using ReportLab.
"""

import io
from datetime import datetime
from typing import List, Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from libs.common.currency import format_amount

CLUB_NAME = "Otters Kenya Swim Club"


def generate_receipt_pdf(
    receipt_number: str,
    invoice_number: str,
    amount: float,
    currency: str,
    paid_at: Optional[datetime],
    payment_reference: Optional[str],
    payment_channel: Optional[str],
    payer_name: Optional[str],
    payer_email: Optional[str],
    payer_phone: Optional[str] = None,
    line_items: Optional[
        List[dict]
    ] = None,  # [{"description": str, "quantity": int, "unit_amount": float}]
    swimmers: Optional[List[dict]] = None,  # [{"name": str, "squad": str}]
) -> bytes:
    """
    Generate a payment receipt PDF.

    Returns PDF as bytes for download or email attachment.
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=0.75 * inch,
        leftMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
        title=f"Receipt {receipt_number}",
    )

    styles = getSampleStyleSheet()
    elements = []

    title_style = ParagraphStyle(
        "ReceiptTitle",
        parent=styles["Heading1"],
        fontSize=22,
        textColor=colors.HexColor("#0e7490"),
        spaceAfter=6,
    )
    heading_style = ParagraphStyle(
        "ReceiptHeading",
        parent=styles["Heading2"],
        fontSize=13,
        textColor=colors.HexColor("#1e293b"),
        spaceBefore=16,
        spaceAfter=8,
    )
    normal_style = styles["Normal"]

    elements.append(Paragraph(CLUB_NAME, title_style))
    elements.append(Paragraph("Official Payment Receipt", styles["Heading2"]))
    elements.append(Spacer(1, 16))

    paid_str = paid_at.strftime("%B %d, %Y %H:%M UTC") if paid_at else "-"
    info_data = [
        ["Receipt No:", receipt_number],
        ["Invoice:", invoice_number],
        ["Date Paid:", paid_str],
        ["Payment Reference:", payment_reference or "N/A"],
        ["Payment Method:", (payment_channel or "N/A").replace("_", " ").title()],
    ]
    info_table = Table(info_data, colWidths=[1.8 * inch, 4 * inch])
    info_table.setStyle(
        TableStyle(
            [
                ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("TEXTCOLOR", (0, 0), (0, -1), colors.HexColor("#64748b")),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ]
        )
    )
    elements.append(info_table)

    elements.append(Paragraph("Billed To", heading_style))
    billed = [payer_name or "N/A", payer_email or "N/A"]
    if payer_phone:
        billed.append(payer_phone)
    for line in billed:
        elements.append(Paragraph(line, normal_style))

    if swimmers:
        elements.append(Paragraph("Swimmers", heading_style))
        for swimmer in swimmers:
            squad = swimmer.get("squad")
            label = swimmer.get("name", "Unknown")
            if squad:
                label = f"{label} ({squad.replace('_', ' ').title()})"
            elements.append(Paragraph(label, normal_style))

    elements.append(Paragraph("Items", heading_style))
    rows = [["Description", "Qty", "Unit Price", "Amount"]]
    for item in line_items or []:
        quantity = item.get("quantity", 1)
        unit_amount = item.get("unit_amount", 0)
        rows.append(
            [
                item.get("description", "-"),
                str(quantity),
                format_amount(unit_amount, currency),
                format_amount(unit_amount * quantity, currency),
            ]
        )
    rows.append(["", "", "Total Paid", format_amount(amount, currency)])

    items_table = Table(
        rows, colWidths=[3 * inch, 0.6 * inch, 1.3 * inch, 1.4 * inch]
    )
    items_table.setStyle(
        TableStyle(
            [
                # Header
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#0e7490")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                # Body
                ("FONTSIZE", (0, 0), (-1, -1), 10),
                ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
                ("GRID", (0, 0), (-1, -2), 0.5, colors.HexColor("#e2e8f0")),
                ("PADDING", (0, 0), (-1, -1), 7),
                # Total
                ("FONTNAME", (2, -1), (-1, -1), "Helvetica-Bold"),
                ("LINEABOVE", (2, -1), (-1, -1), 1, colors.HexColor("#1e293b")),
            ]
        )
    )
    elements.append(items_table)
    elements.append(Spacer(1, 30))

    footer_style = ParagraphStyle(
        "Footer",
        parent=normal_style,
        fontSize=9,
        textColor=colors.HexColor("#94a3b8"),
        alignment=1,  # Center
    )
    elements.append(
        Paragraph(
            f"Thank you for registering with {CLUB_NAME}. "
            "The annual registration fee is non-refundable.",
            footer_style,
        )
    )

    doc.build(elements)
    buffer.seek(0)
    return buffer.getvalue()
