"""
Build the signed completion report ("Folha de OT") for a work order.
Pure function of its inputs: no database or storage access.
"""
import io
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional
from xml.sax.saxutils import escape

from PIL import Image as PILImage
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, Image, Table, TableStyle

from ..services.time_rules import format_hours_detailed, utc_to_local


PRIORITY_LABELS = {"low": "Baixa", "medium": "Média", "high": "Alta", "urgent": "Urgente"}
SERVICE_TYPE_LABELS = {
    "repair": "Reparação",
    "maintenance": "Manutenção",
    "installation": "Instalação",
    "warranty": "Garantia",
}


@dataclass
class CompletionDocumentData:
    reference: str
    title: str
    description: Optional[str]
    priority: str
    service_type: str
    scheduled_date: Optional[date]
    client_name: str
    client_email: Optional[str]
    client_company: Optional[str]
    workers: List[str] = field(default_factory=list)
    total_hours: float = 0.0
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    note: Optional[str] = None


def _signature_flowable(signature_png: bytes, max_w: float, max_h: float) -> Image:
    pil_im = PILImage.open(io.BytesIO(signature_png))
    if pil_im.mode in ("RGBA", "LA", "P"):
        # Flatten transparent canvas strokes onto white
        pil_im = pil_im.convert("RGBA")
        background = PILImage.new("RGB", pil_im.size, (255, 255, 255))
        background.paste(pil_im, mask=pil_im.split()[-1])
        pil_im = background
    elif pil_im.mode != "RGB":
        pil_im = pil_im.convert("RGB")
    width, height = pil_im.size
    scale = min(max_w / width, max_h / height, 1.0)
    img_buf = io.BytesIO()
    pil_im.save(img_buf, format="PNG")
    img_buf.seek(0)
    return Image(img_buf, width=width * scale, height=height * scale)


def render_completion_pdf(data: CompletionDocumentData, signature_png: bytes) -> bytes:
    """
    Render the completion report and return the PDF bytes.

    Raises whatever reportlab/Pillow raise on bad input (e.g. an unreadable signature).
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=20 * mm,
        leftMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
        title=f"Folha de OT {data.reference}",
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "ReportTitle",
        parent=styles["Heading1"],
        fontSize=20,
        alignment=1,
        fontName="Helvetica-Bold",
        spaceAfter=6,
    )
    section_style = ParagraphStyle(
        "Section",
        parent=styles["Heading3"],
        fontName="Helvetica-Bold",
        spaceBefore=10,
        spaceAfter=4,
    )
    body_style = ParagraphStyle("Body", parent=styles["Normal"], fontSize=10.5, leading=14)
    footer_style = ParagraphStyle(
        "Footer",
        parent=styles["Normal"],
        fontSize=8,
        textColor=colors.HexColor("#666666"),
        alignment=1,
        fontName="Helvetica-Oblique",
    )

    def row(label: str, value) -> list:
        text = escape(str(value)) if value not in (None, "") else "N/A"
        return [Paragraph(f"<b>{escape(label)}</b>", body_style), Paragraph(text, body_style)]

    def table(rows: list) -> Table:
        t = Table(rows, colWidths=[45 * mm, 125 * mm])
        t.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor("#dddddd")),
        ]))
        return t

    completed_at = utc_to_local(data.completed_at) if data.completed_at else None

    story = [
        Paragraph("Folha de OT", title_style),
        Paragraph(f"Referência: <b>{escape(data.reference)}</b>", body_style),
        Spacer(1, 4 * mm),
        Paragraph("Detalhes da Ordem", section_style),
        table([
            row("Título", data.title),
            row("Descrição", data.description),
            row("Tipo de Serviço", SERVICE_TYPE_LABELS.get(data.service_type, data.service_type)),
            row("Prioridade", PRIORITY_LABELS.get(data.priority, data.priority)),
            row("Data Agendada", data.scheduled_date.strftime("%d/%m/%Y") if data.scheduled_date else None),
            row("Estado", "Concluída"),
        ]),
        Paragraph("Informações do Cliente", section_style),
        table([
            row("Nome", data.client_name),
            row("Empresa", data.client_company),
            row("Email", data.client_email),
        ]),
        Paragraph("Detalhes da Conclusão", section_style),
        table([
            row("Técnicos", ", ".join(data.workers) if data.workers else None),
            row("Concluído por", data.completed_by),
            row("Horas trabalhadas", format_hours_detailed(data.total_hours)),
            row("Data de conclusão", completed_at.strftime("%d/%m/%Y %H:%M") if completed_at else None),
            row("Notas", data.note),
        ]),
        Paragraph("Assinatura do Cliente", section_style),
        _signature_flowable(signature_png, max_w=80 * mm, max_h=30 * mm),
        Spacer(1, 10 * mm),
        Paragraph(
            f"Documento gerado automaticamente em {completed_at.strftime('%d/%m/%Y %H:%M') if completed_at else ''}",
            footer_style,
        ),
    ]
    doc.build(story)
    buffer.seek(0)
    return buffer.read()
