"""
Payment Receipt PDF Generator
Renders a one-page receipt for a payment with its reservation, client and pack
"""

import io
import logging
from datetime import datetime
from decimal import Decimal
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ...config import BUSINESS_NAME
from ...models import Payment

logger = logging.getLogger(__name__)


def format_eur(amount) -> str:
    """French notation: 1 234,50 €"""
    value = Decimal(str(amount or 0)).quantize(Decimal("0.01"))
    whole, cents = f"{value:,.2f}".split(".")
    return f"{whole.replace(',', ' ')},{cents} €"


def format_date(value) -> str:
    return value.strftime("%d/%m/%Y") if value else "N/A"


class ReceiptPDFGenerator:
    """Generate payment receipts"""

    def __init__(self, payment: Payment):
        self.payment = payment
        self.reservation = payment.reservation
        self.client = self.reservation.client if self.reservation else None
        self.pack = self.reservation.pack if self.reservation else None

        self.page_width, self.page_height = A4
        self.margin = 2 * cm

        self.brand_color = colors.HexColor("#7c3aed")
        self.dark_gray = colors.HexColor("#1e293b")
        self.light_gray = colors.HexColor("#f1f5f9")

    def generate(self) -> bytes:
        """Generate PDF and return bytes"""
        logger.info(f"📄 Generating receipt PDF for payment {self.payment.id}")

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin,
            bottomMargin=self.margin,
            title=f"Reçu de paiement #{self.payment.id}",
        )

        styles = getSampleStyleSheet()
        title_style = ParagraphStyle(
            "ReceiptTitle",
            parent=styles["Heading1"],
            fontSize=22,
            textColor=self.brand_color,
            spaceAfter=6,
        )
        body_style = ParagraphStyle(
            "ReceiptBody",
            parent=styles["Normal"],
            fontSize=10,
            textColor=self.dark_gray,
            spaceAfter=6,
        )

        story = [
            Paragraph(BUSINESS_NAME, title_style),
            Paragraph(f"Reçu de paiement n° {self.payment.id}", body_style),
            Paragraph(f"Émis le {datetime.now().strftime('%d/%m/%Y')}", body_style),
            Spacer(1, 0.8 * cm),
        ]

        info_table = Table(self._info_rows(), colWidths=[5 * cm, 12 * cm])
        info_table.setStyle(
            TableStyle(
                [
                    ("FONT", (0, 0), (0, -1), "Helvetica-Bold", 10),
                    ("FONT", (1, 0), (1, -1), "Helvetica", 10),
                    ("TEXTCOLOR", (0, 0), (-1, -1), self.dark_gray),
                    ("VALIGN", (0, 0), (-1, -1), "TOP"),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
                ]
            )
        )
        story.append(info_table)
        story.append(Spacer(1, 0.8 * cm))

        amount_table = Table(
            [
                ["Type", "Moyen", "Date", "Montant"],
                [
                    self.payment.type,
                    self.payment.moyen,
                    format_date(self.payment.date_paiement),
                    format_eur(self.payment.montant_eur),
                ],
            ],
            colWidths=[4 * cm, 4 * cm, 4 * cm, 5 * cm],
        )
        amount_table.setStyle(
            TableStyle(
                [
                    ("BACKGROUND", (0, 0), (-1, 0), self.brand_color),
                    ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                    ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 10),
                    ("FONT", (0, 1), (-1, -1), "Helvetica", 10),
                    ("FONT", (-1, 1), (-1, 1), "Helvetica-Bold", 11),
                    ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
                    ("BACKGROUND", (0, 1), (-1, -1), self.light_gray),
                    ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                    ("TOPPADDING", (0, 0), (-1, -1), 8),
                    ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
                ]
            )
        )
        story.append(amount_table)

        if self.payment.notes:
            story.append(Spacer(1, 0.5 * cm))
            story.append(Paragraph(f"<i>{escape(self.payment.notes)}</i>", body_style))

        doc.build(story)

        pdf_bytes = buffer.getvalue()
        buffer.close()

        logger.info(f"✅ Generated receipt PDF ({len(pdf_bytes)} bytes)")
        return pdf_bytes

    def _info_rows(self) -> list[list[str]]:
        reservation = self.reservation
        if not reservation:
            return [["Réservation:", "N/A"]]

        client_name = self.client.full_name if self.client else reservation.full_name
        return [
            ["Réservation:", reservation.ref or "N/A"],
            ["Client:", client_name or "N/A"],
            ["Email:", (self.client.email if self.client else reservation.email) or "N/A"],
            ["Pack:", self.pack.nom_pack if self.pack else "N/A"],
            ["Date de l'événement:", format_date(reservation.date_event)],
            ["Lieu:", reservation.adresse_event or reservation.ville_zone],
            ["Reste à payer:", format_eur(0 if reservation.solde_regle else reservation.solde_du)],
        ]
