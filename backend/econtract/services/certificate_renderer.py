"""
Completion certificate PDF rendering (reportlab).
"""
import io
import logging
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from econtract.models.certificate import AuthType, CompletionCertificate, SignatureType

logger = logging.getLogger(__name__)

NAVY = HexColor('#0f2a4a')
GRAY_500 = HexColor('#6b7280')
GRAY_200 = HexColor('#e5e7eb')
WHITE = HexColor('#ffffff')

SIGNATURE_TYPE_LABELS = {
    SignatureType.ELECTRONIC_SIGNATURE: "Electronic signature",
    SignatureType.ELECTRONIC_SIGN: "Electronic sign",
}

AUTH_TYPE_LABELS = {
    AuthType.EMAIL_AUTH: "Email authentication",
    AuthType.MAGIC_LINK_AUTH: "Magic link authentication",
}


def format_certificate_date(value) -> str:
    return value.strftime('%Y/%m/%d %H:%M (UTC)')


class CertificateRenderer:
    """Renders a CompletionCertificate to PDF bytes."""

    def __init__(self):
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        self.styles.add(ParagraphStyle(
            name='CertificateTitle',
            parent=self.styles['Title'],
            fontSize=22,
            textColor=NAVY,
            spaceAfter=8,
            alignment=TA_CENTER
        ))
        self.styles.add(ParagraphStyle(
            name='CertificateSubtitle',
            parent=self.styles['Normal'],
            fontSize=10,
            textColor=GRAY_500,
            spaceAfter=20,
            alignment=TA_CENTER
        ))
        self.styles.add(ParagraphStyle(
            name='SectionHeader',
            parent=self.styles['Heading2'],
            fontSize=13,
            textColor=NAVY,
            spaceBefore=14,
            spaceAfter=6
        ))
        self.styles.add(ParagraphStyle(
            name='HashText',
            parent=self.styles['Normal'],
            fontName='Courier',
            fontSize=8,
            textColor=GRAY_500,
        ))

    def _table(self, rows, col_widths):
        table = Table(rows, colWidths=col_widths)
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('BACKGROUND', (0, 0), (0, -1), GRAY_200),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 6),
            ('TOPPADDING', (0, 0), (-1, -1), 6),
            ('GRID', (0, 0), (-1, -1), 0.5, GRAY_200),
        ]))
        return table

    def render(self, certificate: CompletionCertificate) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            topMargin=20*mm,
            bottomMargin=20*mm,
            leftMargin=20*mm,
            rightMargin=20*mm,
            title=f"Certificate of Completion {certificate.certificate_id}",
        )

        story = [
            Paragraph("CERTIFICATE OF COMPLETION", self.styles['CertificateTitle']),
            Paragraph(
                f"Certificate ID {escape(certificate.certificate_id)}",
                self.styles['CertificateSubtitle']
            ),
            Paragraph("Contract", self.styles['SectionHeader']),
            self._table([
                ["Title", Paragraph(escape(certificate.contract_title), self.styles['Normal'])],
                ["Management number", certificate.contract_management_number],
                ["Signature type", SIGNATURE_TYPE_LABELS.get(certificate.signature_type, "Electronic signature")],
                ["Authentication", AUTH_TYPE_LABELS.get(certificate.auth_type, "Email authentication")],
                ["Timestamp", format_certificate_date(certificate.timestamp_date)],
            ], [50*mm, 120*mm]),
            Paragraph("Parties", self.styles['SectionHeader']),
        ]

        party_rows = [["Role", "Name", "Email", "Signed at"]]
        for party in certificate.parties:
            name = party.name + (f" ({party.company})" if party.company else "")
            party_rows.append([
                party.type.value.capitalize(),
                Paragraph(escape(name), self.styles['Normal']),
                Paragraph(escape(party.email), self.styles['Normal']),
                format_certificate_date(party.signed_at),
            ])
        party_table = Table(party_rows, colWidths=[22*mm, 50*mm, 60*mm, 38*mm])
        party_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), NAVY),
            ('TEXTCOLOR', (0, 0), (-1, 0), WHITE),
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('GRID', (0, 0), (-1, -1), 0.5, GRAY_200),
        ]))
        story.append(party_table)

        story.append(Spacer(1, 10*mm))
        story.append(self._table([
            ["Issued at", format_certificate_date(certificate.issued_at)],
            ["Issued by", f"{certificate.issued_by} / {certificate.issuer_company}"],
        ], [50*mm, 120*mm]))
        story.append(Spacer(1, 6*mm))
        story.append(Paragraph(f"SHA-256: {certificate.certificate_hash}", self.styles['HashText']))
        if certificate.contract_hash:
            story.append(Paragraph(f"Contract SHA-256: {certificate.contract_hash}", self.styles['HashText']))

        doc.build(story)
        logger.info(f"Certificate PDF rendered for {certificate.certificate_id}")
        return buffer.getvalue()
