from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .logging_config import get_logger

logger = get_logger("pdf")

ADDRESS_FIELDS = ('street', 'city', 'state', 'zip_code', 'country')
TAX_ID_FIELDS = (('ICE', 'ICE'), ('IF', 'IF'), ('CNIE', 'CNIE'), ('taxe_professionnelle', 'Taxe professionnelle'))


def _text(value):
    return escape(str(value)) if value not in (None, '') else ''


class InvoicePDF:
    def __init__(self, invoice_data, business_info=None):
        self.invoice_data = invoice_data
        # None values from the profile render as blanks
        self.business = {k: (v if v is not None else "") for k, v in (business_info or {}).items()}
        self.symbol = invoice_data['currency']['symbol']
        self.font_name = 'Helvetica'
        self.bold_font_name = 'Helvetica-Bold'

    def money(self, value):
        return f"{self.symbol}{value:,.2f}"

    def generate(self, target):
        """Render to ``target``, a filename or a binary file object."""
        doc = SimpleDocTemplate(target, pagesize=A4, rightMargin=40, leftMargin=40, topMargin=40, bottomMargin=40)
        styles = getSampleStyleSheet()

        normal_style = ParagraphStyle('Normal_Custom', parent=styles['Normal'], fontName=self.font_name, fontSize=10, leading=14)
        bold_style = ParagraphStyle('Bold_Custom', parent=normal_style, fontName=self.bold_font_name)
        white_bold_style = ParagraphStyle('WhiteBold_Custom', parent=bold_style, textColor=colors.white)
        muted_style = ParagraphStyle('Muted_Custom', parent=normal_style, textColor=colors.gray)
        right_style = ParagraphStyle('Right_Custom', parent=normal_style, alignment=2)
        title_style = ParagraphStyle('Title_Custom', parent=styles['Heading1'], fontName=self.bold_font_name, fontSize=24, spaceAfter=20, alignment=2)

        story = []
        story.append(self._header(normal_style, bold_style, title_style))
        story.append(Spacer(1, 0.5 * inch))
        story.append(self._bill_to(normal_style, bold_style, muted_style, right_style))
        story.append(Spacer(1, 0.5 * inch))
        story.append(self._items(normal_style, white_bold_style))
        story.append(Spacer(1, 0.2 * inch))
        story.append(self._totals(normal_style, bold_style))

        notes = self.invoice_data.get('notes')
        if notes:
            story.append(Spacer(1, 0.4 * inch))
            story.append(Paragraph("Notes:", bold_style))
            story.append(Paragraph(_text(notes), normal_style))

        doc.build(story)
        logger.debug("pdf_rendered", extra={"invoice_number": self.invoice_data['invoice_number']})

    def _header(self, normal_style, bold_style, title_style):
        sender_info = [Paragraph(_text(self.business.get('name')), bold_style)]
        for line in str(self.business.get('address', '')).split('\n'):
            if line.strip():
                sender_info.append(Paragraph(_text(line), normal_style))
        if self.business.get('email'):
            sender_info.append(Paragraph(f"Email: {_text(self.business['email'])}", normal_style))
        if self.business.get('phone'):
            sender_info.append(Paragraph(f"Phone: {_text(self.business['phone'])}", normal_style))
        for key, label in TAX_ID_FIELDS:
            if self.business.get(key):
                sender_info.append(Paragraph(f"{label}: {_text(self.business[key])}", normal_style))

        invoice_title = [
            Paragraph("INVOICE", title_style),
            Paragraph(
                f"#{_text(self.invoice_data['invoice_number'])}",
                ParagraphStyle('InvNum', parent=normal_style, alignment=2, fontSize=12, textColor=colors.gray),
            ),
        ]

        header_table = Table([[sender_info, invoice_title]], colWidths=[3.5 * inch, 2.5 * inch])
        header_table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LEFTPADDING', (0, 0), (-1, -1), 0),
            ('RIGHTPADDING', (0, 0), (-1, -1), 0),
        ]))
        return header_table

    def _bill_to(self, normal_style, bold_style, muted_style, right_style):
        client = self.invoice_data['client']
        bill_to = [Paragraph("Bill To:", muted_style), Paragraph(_text(client['name']), bold_style)]
        if client.get('company'):
            bill_to.append(Paragraph(_text(client['company']), normal_style))
        address = client.get('address') or {}
        for field in ADDRESS_FIELDS:
            if address.get(field):
                bill_to.append(Paragraph(_text(address[field]), normal_style))

        label_style = ParagraphStyle('DetailLabel', parent=muted_style, alignment=2)
        balance_style = ParagraphStyle('BalValue', parent=bold_style, alignment=2)
        details = Table([
            [Paragraph("Invoice Date:", label_style), Paragraph(_text(self.invoice_data['invoice_date']), right_style)],
            [Paragraph("Due Date:", label_style), Paragraph(_text(self.invoice_data['due_date']), right_style)],
            [Paragraph("Status:", label_style), Paragraph(_text(self.invoice_data['status']).capitalize(), right_style)],
            [Paragraph("Balance Due:", balance_style), Paragraph(self.money(self.invoice_data['total']), balance_style)],
        ], colWidths=[2 * inch, 1.2 * inch])
        details.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('BACKGROUND', (0, 3), (-1, 3), colors.whitesmoke),
            ('PADDING', (0, 3), (-1, 3), 6),
        ]))

        mid_table = Table([[bill_to, details]], colWidths=[3.0 * inch, 3.2 * inch])
        mid_table.setStyle(TableStyle([
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('LEFTPADDING', (0, 0), (-1, -1), 0),
        ]))
        return mid_table

    def _items(self, normal_style, white_bold_style):
        rows = [[Paragraph(h, white_bold_style) for h in ("Item", "Quantity", "Rate", "Amount")]]
        for item in self.invoice_data['items']:
            rows.append([
                Paragraph(_text(item['description']), normal_style),
                Paragraph(f"{item['quantity']:g}", normal_style),
                Paragraph(self.money(item['rate']), normal_style),
                Paragraph(self.money(item['amount']), normal_style),
            ])

        items_table = Table(rows, colWidths=[3 * inch, 1 * inch, 1 * inch, 1 * inch])
        items_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.Color(0.2, 0.2, 0.2)),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('PADDING', (0, 0), (-1, -1), 10),
        ]))
        return items_table

    def _totals(self, normal_style, bold_style):
        data = self.invoice_data
        totals_table = Table([
            [Paragraph("Subtotal:", bold_style), Paragraph(self.money(data['subtotal']), normal_style)],
            [Paragraph(f"Tax ({data['tax_rate']:g}%):", bold_style), Paragraph(self.money(data['tax_amount']), normal_style)],
            [Paragraph("Total:", bold_style), Paragraph(f"{self.money(data['total'])} {_text(data['currency']['code'])}", bold_style)],
        ], colWidths=[1.5 * inch, 1.5 * inch])
        totals_table.setStyle(TableStyle([
            ('ALIGN', (0, 0), (-1, -1), 'RIGHT'),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
        ]))
        # pushes the totals to the right edge
        return Table([[None, totals_table]], colWidths=[3 * inch, 3 * inch])
