"""Report and ledger exports: JSON, CSV, PDF and print HTML."""

import csv
import io
import json
import logging
import re
from typing import Iterable, Optional
from xml.sax.saxutils import escape

from jinja2 import Template
from markupsafe import Markup
from reportlab.graphics.shapes import Drawing, PolyLine, Rect
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import KeepTogether, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from governance_api.ledger.store import format_timestamp
from governance_api.errors import InvalidSignature
from governance_api.models import LedgerEvent, ReportRun, ReportSignature
from governance_api.reports.signatures import sanitize_signature_svg

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "id",
    "sequence",
    "created_at",
    "event_type",
    "category",
    "severity",
    "outcome",
    "actor_id",
    "target_type",
    "target_id",
    "previous_hash",
    "hash",
)

# JSON


def report_run_json(run: ReportRun) -> bytes:
    """The run's canonical payload, byte for byte what was hashed."""
    return run.canonical_payload.encode("utf-8")


# CSV


def ledger_events_csv(events: Iterable[LedgerEvent]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for event in events:
        writer.writerow(
            [
                event.id,
                event.sequence,
                format_timestamp(event.created_at),
                event.event_type,
                event.category,
                event.severity,
                event.outcome,
                event.actor_id or "",
                event.target_type or "",
                event.target_id or "",
                event.previous_hash,
                event.hash,
            ]
        )
    return buffer.getvalue()


# Signature strokes

_PATH_D = re.compile(r"<\s*path\b[^>]*?\bd\s*=\s*(\"[^\"]*\"|'[^']*')", re.IGNORECASE | re.DOTALL)
_POLYLINE = re.compile(
    r"<\s*(?:polyline|polygon)\b[^>]*?\bpoints\s*=\s*(\"[^\"]*\"|'[^']*')", re.IGNORECASE | re.DOTALL
)
_VIEWBOX = re.compile(r"viewBox\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)
_PATH_TOKEN = re.compile(r"[MmLlHhVvZzCcSsQqTtAa]|[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_NUMBER = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")

# Parameters consumed per command; curves and arcs are drawn as a straight
# segment to their end point.
_PARAM_COUNT = {"M": 2, "L": 2, "H": 1, "V": 1, "Z": 0, "C": 6, "S": 4, "Q": 4, "T": 2, "A": 7}


def extract_path_data(svg: str) -> list[str]:
    """Return the ``d`` attribute of every <path> in document order."""
    return [match.group(1)[1:-1] for match in _PATH_D.finditer(svg or "")]


def parse_path(d: str) -> list[list[tuple[float, float]]]:
    """Parse SVG path data into polylines (one per subpath)."""
    tokens = _PATH_TOKEN.findall(d or "")
    strokes: list[list[tuple[float, float]]] = []
    current: list[tuple[float, float]] = []
    x = y = 0.0
    start = (0.0, 0.0)
    command = None
    i = 0
    while i < len(tokens):
        token = tokens[i]
        if token.isalpha():
            command = token
            i += 1
            if command in "Zz":
                if current:
                    current.append(start)
                    x, y = start
                continue
        if command is None:
            # Numbers before any command: malformed path.
            break

        upper = command.upper()
        count = _PARAM_COUNT[upper]
        params = tokens[i:i + count]
        if len(params) < count or any(p.isalpha() for p in params):
            break
        values = [float(p) for p in params]
        i += count
        relative = command.islower()

        if upper == "H":
            x = x + values[0] if relative else values[0]
        elif upper == "V":
            y = y + values[0] if relative else values[0]
        else:
            ex, ey = values[-2], values[-1]
            x, y = (x + ex, y + ey) if relative else (ex, ey)

        if upper == "M":
            if len(current) > 1:
                strokes.append(current)
            current = [(x, y)]
            start = (x, y)
            # Further coordinate pairs after a moveto are implicit linetos.
            command = "l" if relative else "L"
        else:
            if not current:
                current = [start]
            current.append((x, y))

    if len(current) > 1:
        strokes.append(current)
    return strokes


def parse_signature_strokes(svg: str) -> list[list[tuple[float, float]]]:
    strokes = []
    for d in extract_path_data(svg):
        strokes.extend(parse_path(d))
    for match in _POLYLINE.finditer(svg or ""):
        numbers = [float(n) for n in _NUMBER.findall(match.group(1))]
        points = list(zip(numbers[0::2], numbers[1::2]))
        if len(points) > 1:
            strokes.append(points)
    return strokes


def _view_box(svg: str, strokes) -> tuple[float, float, float, float]:
    match = _VIEWBOX.search(svg or "")
    if match:
        parts = [float(n) for n in _NUMBER.findall(match.group(1))]
        if len(parts) == 4 and parts[2] > 0 and parts[3] > 0:
            return parts[0], parts[1], parts[2], parts[3]
    xs = [p[0] for stroke in strokes for p in stroke] or [0.0]
    ys = [p[1] for stroke in strokes for p in stroke] or [0.0]
    return min(xs), min(ys), max(max(xs) - min(xs), 1.0), max(max(ys) - min(ys), 1.0)


def signature_drawing(svg: str, width: float = 2.5 * inch, height: float = 0.7 * inch) -> Drawing:
    """Render signature strokes as vector polylines scaled into a box."""
    drawing = Drawing(width, height)
    drawing.add(Rect(0, 0, width, height, strokeColor=colors.HexColor("#dee2e6"), fillColor=None))
    strokes = parse_signature_strokes(svg)
    if not strokes:
        logger.warning("Signature SVG has no drawable strokes")
        return drawing

    min_x, min_y, box_w, box_h = _view_box(svg, strokes)
    scale = min(width / box_w, height / box_h)
    offset_x = (width - box_w * scale) / 2
    offset_y = (height - box_h * scale) / 2
    for stroke in strokes:
        points = []
        for px, py in stroke:
            points.append(offset_x + (px - min_x) * scale)
            # SVG y grows downwards.
            points.append(height - offset_y - (py - min_y) * scale)
        drawing.add(PolyLine(points, strokeColor=colors.black, strokeWidth=1.2))
    return drawing


# PDF


def _cell(value) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def report_run_pdf(run: ReportRun, signatures: Optional[list[ReportSignature]] = None) -> bytes:
    """Generate the PDF for a report run from its frozen payload."""
    payload = json.loads(run.canonical_payload)
    signatures = [s for s in (signatures or []) if s.is_active]

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=letter,
        rightMargin=0.75 * inch,
        leftMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
        title=payload.get("meta", {}).get("packet_title", "Report"),
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "PacketTitle",
        parent=styles["Title"],
        fontSize=20,
        textColor=colors.HexColor("#1a1a1a"),
        spaceAfter=12,
    )
    heading_style = ParagraphStyle(
        "SectionHeading",
        parent=styles["Heading2"],
        fontSize=13,
        textColor=colors.HexColor("#2c3e50"),
        spaceBefore=16,
        spaceAfter=8,
    )
    cell_style = ParagraphStyle("Cell", parent=styles["Normal"], fontSize=8, leading=10)
    mono_style = ParagraphStyle("Mono", parent=cell_style, fontName="Courier", fontSize=7)

    table_style = TableStyle(
        [
            ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#f8f9fa")),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#dee2e6")),
            ("TOPPADDING", (0, 0), (-1, -1), 4),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ]
    )

    meta = payload.get("meta", {})
    story = [
        Paragraph(escape(meta.get("packet_title", "Report")), title_style),
        Table(
            [
                [Paragraph("Report Run", cell_style), Paragraph(run.id, mono_style)],
                [Paragraph("Job", cell_style), Paragraph(escape(_cell(meta.get("job_id"))), mono_style)],
                [Paragraph("Status", cell_style), Paragraph(run.status, cell_style)],
                [Paragraph("Generated", cell_style), Paragraph(format_timestamp(run.generated_at), cell_style)],
                [Paragraph("Data Hash", cell_style), Paragraph(run.data_hash, mono_style)],
            ],
            colWidths=[1.4 * inch, 5.6 * inch],
            style=table_style,
        ),
    ]

    for section in payload.get("sections", []):
        story.append(Paragraph(escape(section.get("title", section.get("type", ""))), heading_style))
        if section.get("empty"):
            story.append(Paragraph("No data recorded for this section.", styles["Italic"]))
            continue
        rows = []
        for key, value in section.get("data", {}).items():
            if isinstance(value, list) and value and isinstance(value[0], dict):
                continue
            rows.append([Paragraph(escape(key.replace("_", " ").title()), cell_style), Paragraph(escape(_cell(value)), cell_style)])
        if rows:
            story.append(Table(rows, colWidths=[2 * inch, 5 * inch], style=table_style))
        for key, value in section.get("data", {}).items():
            if not (isinstance(value, list) and value and isinstance(value[0], dict)):
                continue
            columns = list(value[0].keys())
            header = [Paragraph(f"<b>{escape(c)}</b>", cell_style) for c in columns]
            body = [[Paragraph(escape(_cell(item.get(c))), cell_style) for c in columns] for item in value]
            story.append(Spacer(1, 6))
            story.append(Table([header] + body, repeatRows=1, style=table_style))

    story.append(Paragraph("Signatures", heading_style))
    if not signatures:
        story.append(Paragraph("No signatures recorded.", styles["Italic"]))
    for sig in signatures:
        block = Table(
            [
                [signature_drawing(sig.signature_svg), Paragraph(
                    f"<b>{escape(sig.signature_role.replace('_', ' ').title())}</b><br/>"
                    f"{escape(sig.signer_name)}, {escape(sig.signer_title)}<br/>"
                    f"Signed {format_timestamp(sig.signed_at)}",
                    cell_style,
                )],
                [Paragraph("Signature Hash", cell_style), Paragraph(sig.signature_hash, mono_style)],
                [Paragraph("Attestation", cell_style), Paragraph(escape(sig.attestation_text), cell_style)],
            ],
            colWidths=[2.7 * inch, 4.3 * inch],
            style=table_style,
        )
        story.append(KeepTogether([block, Spacer(1, 8)]))

    doc.build(story)
    return buffer.getvalue()


# Print HTML

PRINT_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <title>{{ meta.packet_title }} - {{ run.id }}</title>
    <style>
        body { font-family: -apple-system, "Segoe UI", Helvetica, Arial, sans-serif; color: #1a1a1a; margin: 40px; }
        h1 { font-size: 24px; margin-bottom: 4px; }
        h2 { font-size: 16px; color: #2c3e50; border-bottom: 1px solid #dee2e6; padding-bottom: 4px; margin-top: 28px; }
        table { border-collapse: collapse; width: 100%; font-size: 12px; }
        td, th { border: 1px solid #dee2e6; padding: 4px 6px; text-align: left; vertical-align: top; }
        th { background: #f8f9fa; }
        .hash { font-family: monospace; font-size: 11px; word-break: break-all; }
        .empty { color: #6c757d; font-style: italic; }
        .signature svg { width: 240px; height: 70px; }
        @media print { .page-break { page-break-before: always; } }
    </style>
</head>
<body>
    <h1>{{ meta.packet_title }}</h1>
    <table>
        <tr><th>Report Run</th><td class="hash">{{ run.id }}</td></tr>
        <tr><th>Job</th><td class="hash">{{ meta.job_id }}</td></tr>
        <tr><th>Status</th><td>{{ run.status }}</td></tr>
        <tr><th>Data Hash</th><td class="hash">{{ run.data_hash }}</td></tr>
    </table>

    {% for section in sections %}
    <h2>{{ section.title }}</h2>
    {% if section.empty %}
    <p class="empty">No data recorded for this section.</p>
    {% else %}
    <table>
        {% for key, value in section.data.items() %}
        {% if value is not sequence or value is string %}
        <tr><th>{{ key | replace("_", " ") | title }}</th><td>{{ value if value is not none else "N/A" }}</td></tr>
        {% else %}
        <tr><th>{{ key | replace("_", " ") | title }}</th><td>{{ value | length }} item(s)</td></tr>
        {% endif %}
        {% endfor %}
    </table>
    {% endif %}
    {% endfor %}

    <h2 class="page-break">Signatures</h2>
    {% for sig in signatures %}
    <div class="signature">
        {% if sig.svg_markup %}{{ sig.svg_markup }}{% else %}<p class="empty">Signature strokes unavailable.</p>{% endif %}
        <p><strong>{{ sig.signature_role | replace("_", " ") | title }}</strong>:
            {{ sig.signer_name }}, {{ sig.signer_title }}</p>
        <p class="hash">{{ sig.signature_hash }}</p>
    </div>
    {% else %}
    <p class="empty">No signatures recorded.</p>
    {% endfor %}
</body>
</html>
"""


def _signature_markup(signature: ReportSignature) -> Optional[Markup]:
    """Re-sanitized SVG for embedding; None when the stored SVG no longer passes."""
    try:
        return Markup(sanitize_signature_svg(signature.signature_svg))
    except InvalidSignature as exc:
        logger.error(
            f"Stored signature SVG rejected at render time: {exc.message}",
            extra={"report_run_id": signature.report_run_id, "signature_id": signature.id},
        )
        return None


def render_print_html(run: ReportRun, signatures: Optional[list[ReportSignature]] = None) -> str:
    """Render the print page for a run.

    Stored signature SVG is never embedded verbatim: each one goes through
    the allowlist sanitizer again and only its clean re-serialization is
    written into the page.
    """
    payload = json.loads(run.canonical_payload)
    template = Template(PRINT_TEMPLATE, autoescape=True)
    return template.render(
        run=run,
        meta=payload.get("meta", {}),
        sections=payload.get("sections", []),
        signatures=[
            {
                "signature_role": s.signature_role,
                "signer_name": s.signer_name,
                "signer_title": s.signer_title,
                "signature_hash": s.signature_hash,
                "svg_markup": _signature_markup(s),
            }
            for s in (signatures or [])
            if s.is_active
        ],
    )
