"""
Render a technical report ("laudo técnico") for one service order as PDF.
"""
import io
from typing import List, Optional, Sequence

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas
from PIL import Image

from ..models.models import STATUS_LABELS
from ..schemas.records import ChecklistItemRow, ReportRow, ServiceOrderRow

MARGIN = 56
FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"


class _Writer:
    def __init__(self, c: canvas.Canvas, page_height: float, width: float) -> None:
        self.c = c
        self.page_height = page_height
        self.width = width
        self.y = page_height - MARGIN

    def ensure(self, needed: float) -> None:
        if self.y - needed < MARGIN:
            self.c.showPage()
            self.y = self.page_height - MARGIN

    def line(self, text: str, size: int = 10, bold: bool = False, gap: int = 4) -> None:
        font = FONT_BOLD if bold else FONT
        for part in simpleSplit(text, font, size, self.width) or [""]:
            self.ensure(size + gap)
            self.c.setFont(font, size)
            self.c.setFillColor(colors.black)
            self.c.drawString(MARGIN, self.y - size, part)
            self.y -= size + gap


def _checklist(w: _Writer, title: str, items: Sequence[ChecklistItemRow]) -> None:
    done = sum(1 for i in items if i.done)
    w.line(f"{title} ({done}/{len(items)})", size=12, bold=True, gap=6)
    if not items:
        w.line("Nenhum item cadastrado")
    for item in items:
        w.line(f"[{'x' if item.done else ' '}] {item.label}")
    w.y -= 8


def _photo(w: _Writer, data: bytes) -> None:
    try:
        img = Image.open(io.BytesIO(data))
        if img.mode in ("RGBA", "P"):
            img = img.convert("RGB")
        img.thumbnail((1024, 1024))
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=80)
        buf.seek(0)
    except OSError:
        return
    ratio = img.height / img.width if img.width else 1
    draw_w = min(w.width, 260)
    draw_h = draw_w * ratio
    w.ensure(draw_h + 8)
    w.c.drawImage(ImageReader(buf), MARGIN, w.y - draw_h, width=draw_w, height=draw_h)
    w.y -= draw_h + 8


def build_report_pdf(
    order: ServiceOrderRow,
    report: Optional[ReportRow],
    materials: Sequence[ChecklistItemRow] = (),
    processes: Sequence[ChecklistItemRow] = (),
    photos: Optional[List[bytes]] = None,
) -> bytes:
    """Generate PDF bytes for the order's report."""
    buf = io.BytesIO()
    page_width, page_height = A4
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Laudo Técnico {order.os_number}")
    w = _Writer(c, page_height, page_width - 2 * MARGIN)

    w.line("Laudo Técnico", size=18, bold=True, gap=10)
    w.line(f"OS {order.os_number}", size=12, bold=True)
    client = order.clients
    if client is not None:
        w.line(f"Cliente: {client.name}")
        w.line(f"Telefone: {client.phone or 'N/A'}")
        w.line(f"Endereço: {client.address or 'N/A'}")
    w.line(f"Tipo: {order.type}   Status: {STATUS_LABELS.get(order.status, order.status)}   Dia: {order.day}")
    if order.assignee:
        w.line(f"Responsável: {order.assignee}")
    w.y -= 10

    _checklist(w, "Materiais", materials)
    _checklist(w, "Processos", processes)

    w.line("Relatório", size=12, bold=True, gap=6)
    content = (report.content if report else None) or ""
    for paragraph in content.replace("\r\n", "\n").split("\n"):
        w.line(paragraph)

    if photos:
        w.y -= 10
        w.line("Fotos do Serviço", size=12, bold=True, gap=6)
        for data in photos:
            _photo(w, data)

    c.showPage()
    c.save()
    buf.seek(0)
    return buf.read()
