"""Build new PDFs from images, plain text, Markdown and HTML."""

import io
import re
from html.parser import HTMLParser
from xml.sax.saxutils import escape

from PIL import Image, UnidentifiedImageError
from reportlab.lib.pagesizes import A4, LEGAL, LETTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from reportlab.platypus import ListFlowable, ListItem, Paragraph, SimpleDocTemplate, Spacer

from app.core.exceptions import ValidationError
from app.core.logging import get_logger

log = get_logger(__name__)

PAGE_SIZES = {"letter": LETTER, "a4": A4, "legal": LEGAL}
IMAGE_MARGIN = 36
TEXT_MARGIN = inch

_styles = getSampleStyleSheet()
BODY = ParagraphStyle("Body", parent=_styles["Normal"], fontName="Helvetica", fontSize=12, leading=18)
HEADINGS = {
    1: ParagraphStyle("H1", parent=_styles["Heading1"], fontName="Helvetica-Bold", fontSize=24, leading=30),
    2: ParagraphStyle("H2", parent=_styles["Heading2"], fontName="Helvetica-Bold", fontSize=20, leading=26),
    3: ParagraphStyle("H3", parent=_styles["Heading3"], fontName="Helvetica-Bold", fontSize=16, leading=22),
}


def page_size(name: str | None) -> tuple[float, float]:
    try:
        return PAGE_SIZES[(name or "letter").lower()]
    except KeyError:
        raise ValidationError(f"Unknown page size: {name}", details={"pageSizes": list(PAGE_SIZES)}) from None


def file_title(title: str) -> str:
    return re.sub(r"\s+", "_", title.strip()) or "document"


def images_to_pdf(images: list[tuple[str, bytes]], size: str = "letter", title: str = "Images") -> tuple[bytes, int]:
    """One page per PNG/JPEG, scaled to fit inside the margins and centred.

    Files Pillow cannot read, or in other formats, are skipped.
    """
    if not images:
        raise ValidationError("At least one image required")
    width, height = page_size(size)
    content_w, content_h = width - IMAGE_MARGIN * 2, height - IMAGE_MARGIN * 2

    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=(width, height))
    c.setTitle(title)
    added = 0
    for filename, data in images:
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            log.info("image_skipped", filename=filename, error=str(e))
            continue
        if img.format not in ("PNG", "JPEG"):
            log.info("image_skipped", filename=filename, format=img.format)
            continue
        scale = min(content_w / img.width, content_h / img.height)
        draw_w, draw_h = img.width * scale, img.height * scale
        c.drawImage(
            ImageReader(img),
            IMAGE_MARGIN + (content_w - draw_w) / 2,
            IMAGE_MARGIN + (content_h - draw_h) / 2,
            width=draw_w,
            height=draw_h,
            mask="auto",
        )
        c.showPage()
        added += 1
    if not added:
        raise ValidationError("No valid images processed")
    c.save()
    return buf.getvalue(), added


def _build(flowables: list, title: str, size: str) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=page_size(size),
        leftMargin=TEXT_MARGIN,
        rightMargin=TEXT_MARGIN,
        topMargin=TEXT_MARGIN,
        bottomMargin=TEXT_MARGIN,
        title=title,
    )
    doc.build(flowables or [Spacer(1, 1)])
    return buf.getvalue()


def text_to_pdf(text: str, title: str = "Document", size: str = "letter") -> bytes:
    if not text or not text.strip():
        raise ValidationError("Text content required")
    story = []
    for line in text.splitlines():
        if line.strip():
            # Preserve leading indentation
            story.append(Paragraph(escape(line).replace("  ", "&nbsp; "), BODY))
        else:
            story.append(Spacer(1, 15))
    return _build(story, title, size)


def _bullets(items: list[str]) -> ListFlowable:
    return ListFlowable(
        [ListItem(Paragraph(item, BODY), leftIndent=12) for item in items],
        bulletType="bullet",
        start="•",
        leftIndent=12,
    )


def _inline_markdown(text: str) -> str:
    text = escape(text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    text = re.sub(r"(?<!\*)\*(?!\*)(.+?)(?<!\*)\*(?!\*)", r"<i>\1</i>", text)
    return re.sub(r"`(.+?)`", r'<font face="Courier">\1</font>', text)


def markdown_to_pdf(markdown: str, title: str = "Document", size: str = "letter") -> bytes:
    """Headings (#, ##, ###), bullets (- or *), bold/italic/code spans and blank-line spacing."""
    if not markdown or not markdown.strip():
        raise ValidationError("Markdown content required")
    story: list = []
    pending: list[str] = []

    def flush():
        if pending:
            story.append(_bullets(list(pending)))
            pending.clear()

    for line in markdown.splitlines():
        stripped = line.strip()
        heading = re.match(r"^(#{1,3})\s+(.*)$", stripped)
        bullet = re.match(r"^[-*]\s+(.*)$", stripped)
        if bullet:
            pending.append(_inline_markdown(bullet.group(1)))
            continue
        flush()
        if heading:
            story.append(Paragraph(_inline_markdown(heading.group(2)), HEADINGS[len(heading.group(1))]))
        elif stripped:
            story.append(Paragraph(_inline_markdown(stripped), BODY))
        else:
            story.append(Spacer(1, 10))
    flush()
    return _build(story, title, size)


class _BlockExtractor(HTMLParser):
    """Collects (tag, text) pairs for headings, paragraphs and list items."""

    BLOCKS = {"h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "div", "blockquote", "pre", "tr"}
    SKIP = {"script", "style", "head"}

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.blocks: list[tuple[str, str]] = []
        self._tag = "p"
        self._text: list[str] = []
        self._skip = 0

    def _flush(self):
        text = re.sub(r"\s+", " ", "".join(self._text)).strip()
        if text:
            self.blocks.append((self._tag, text))
        self._text = []

    def handle_starttag(self, tag, attrs):
        if tag in self.SKIP:
            self._skip += 1
        elif tag in self.BLOCKS:
            self._flush()
            self._tag = tag
        elif tag == "br":
            self._text.append(" ")

    def handle_endtag(self, tag):
        if tag in self.SKIP:
            self._skip = max(0, self._skip - 1)
        elif tag in self.BLOCKS:
            self._flush()
            self._tag = "p"

    def handle_data(self, data):
        if not self._skip:
            self._text.append(data)

    def close(self):
        super().close()
        self._flush()


def html_to_pdf(html: str, title: str = "Document", size: str = "letter") -> bytes:
    """Block-level text extraction; markup beyond headings, paragraphs and lists is dropped."""
    if not html or not html.strip():
        raise ValidationError("HTML content required")
    parser = _BlockExtractor()
    parser.feed(html)
    parser.close()

    story: list = []
    items: list[str] = []
    for tag, text in parser.blocks:
        if tag == "li":
            items.append(escape(text))
            continue
        if items:
            story.append(_bullets(items))
            items = []
        if tag in ("h1", "h2", "h3", "h4", "h5", "h6"):
            story.append(Paragraph(escape(text), HEADINGS[min(int(tag[1]), 3)]))
        else:
            story.append(Paragraph(escape(text), BODY))
    if items:
        story.append(_bullets(items))
    if not story:
        raise ValidationError("HTML contains no text")
    return _build(story, title, size)
