from __future__ import annotations

import io
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from dispatch_assistant.request_state import ServiceRequest, ServiceType, ServiceUrgency

URGENCY_BANNERS = {
    ServiceUrgency.ERS: ("EMERGENCY ROAD SERVICE (TODAY/SAME-DAY)", "#b91c1c"),
    ServiceUrgency.DELAYED: ("DELAYED SERVICE (TOMORROW)", "#c2410c"),
    ServiceUrgency.SCHEDULED: ("SCHEDULED SERVICE (2+ DAYS)", "#1d4ed8"),
}


class Exporter:
    """
    Work-order documents. Exports always go to: <outbox>/<request_id>/
    """
    def __init__(self, outbox_dir: str | Path):
        self.dir = Path(outbox_dir)
        self.dir.mkdir(parents=True, exist_ok=True)
        self.styles = getSampleStyleSheet()
        self._setup_styles()

    def _setup_styles(self) -> None:
        self.title_style = ParagraphStyle(
            "WorkOrderTitle",
            parent=self.styles["Heading1"],
            fontSize=22,
            textColor=colors.HexColor("#1e3a5f"),
            alignment=TA_CENTER,
            spaceAfter=6,
            fontName="Helvetica-Bold",
        )
        self.header_style = ParagraphStyle(
            "WorkOrderHeader",
            parent=self.styles["Heading2"],
            fontSize=13,
            textColor=colors.HexColor("#2563eb"),
            spaceBefore=12,
            spaceAfter=6,
            fontName="Helvetica-Bold",
        )
        self.label_style = ParagraphStyle(
            "WorkOrderLabel", parent=self.styles["Normal"], fontSize=9,
            textColor=colors.HexColor("#64748b"), fontName="Helvetica",
        )
        self.value_style = ParagraphStyle(
            "WorkOrderValue", parent=self.styles["Normal"], fontSize=10,
            textColor=colors.HexColor("#1e293b"), fontName="Helvetica-Bold",
        )
        self.body_style = ParagraphStyle(
            "WorkOrderBody", parent=self.styles["Normal"], fontSize=9, leading=12,
        )

    # --------------------------------------------------------------------------

    def render_work_order(self, record: ServiceRequest) -> bytes:
        """Render the work order as PDF bytes."""
        buf = io.BytesIO()
        doc = SimpleDocTemplate(
            buf, pagesize=letter,
            leftMargin=0.75 * inch, rightMargin=0.75 * inch,
            topMargin=0.6 * inch, bottomMargin=0.6 * inch,
            title=f"Work Order {record.id}",
        )
        doc.build(self._story(record))
        return buf.getvalue()

    def write_work_order(self, record: ServiceRequest) -> str:
        out_dir = self.dir / record.id
        out_dir.mkdir(parents=True, exist_ok=True)
        out = out_dir / f"work_order_{self._ts()}.pdf"
        out.write_bytes(self.render_work_order(record))
        return str(out)

    # --------------------------------------------------------------------------

    def _story(self, r: ServiceRequest) -> list:
        story: list = [Paragraph("ROADSIDE SERVICE WORK ORDER", self.title_style)]

        if r.urgency in URGENCY_BANNERS:
            text, color = URGENCY_BANNERS[r.urgency]
            banner = Table([[text]], colWidths=[7 * inch])
            banner.setStyle(TableStyle([
                ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor(color)),
                ("TEXTCOLOR", (0, 0), (-1, -1), colors.white),
                ("FONTNAME", (0, 0), (-1, -1), "Helvetica-Bold"),
                ("ALIGN", (0, 0), (-1, -1), "CENTER"),
                ("TOPPADDING", (0, 0), (-1, -1), 6),
                ("BOTTOMPADDING", (0, 0), (-1, -1), 6),
            ]))
            story += [banner, Spacer(1, 8)]

        story += self._section("Work Order", [
            ("Request ID", r.id),
            ("Status", r.status.value),
            ("Created", r.timestamp),
            ("Submitted", r.submitted_at),
        ])
        story += self._section("Driver", [
            ("Name", r.driver_name),
            ("Phone", r.contact_phone),
            ("Fleet", r.fleet_name),
        ])
        loc = r.location
        story += self._section("Location", [
            ("Location", loc.current_location),
            ("Highway / road", loc.highway_or_road),
            ("Mile marker", loc.nearest_mile_marker),
            ("Safe location", _yes_no(loc.is_safe_location)),
        ])
        v = r.vehicle
        story += self._section("Vehicle", [
            ("Type", v.vehicle_type.value if v.vehicle_type else None),
            ("Make", v.make),
            ("Model", v.model),
            ("Year", v.year),
            ("License plate", v.license_plate),
            ("Unit number", v.unit_number),
        ])
        story += self._section("Service Details", self._service_rows(r))

        if r.urgency == ServiceUrgency.SCHEDULED and r.scheduled_appointment:
            s = r.scheduled_appointment
            story += self._section("Schedule", [
                ("Date", s.scheduled_date),
                ("Time", s.scheduled_time),
                ("Service location", s.scheduled_location),
            ])
        if r.assigned_provider_name:
            story += self._section("Provider", [("Assigned to", r.assigned_provider_name)])

        if r.conversation_transcript:
            story.append(Paragraph("Conversation Transcript", self.header_style))
            for block in r.conversation_transcript.split("\n\n"):
                story.append(Paragraph(escape(block).replace("\n", "<br/>"), self.body_style))
                story.append(Spacer(1, 4))
        return story

    @staticmethod
    def _service_rows(r: ServiceRequest) -> List[Tuple[str, Optional[str]]]:
        rows: List[Tuple[str, Optional[str]]] = [("Service type", r.service_type.value if r.service_type else None)]
        if r.service_type == ServiceType.TIRE and r.tire_info:
            t = r.tire_info
            rows += [
                ("Requested service", t.requested_service.value if t.requested_service else None),
                ("Tire", t.requested_tire),
                ("Quantity", str(t.number_of_tires) if t.number_of_tires else None),
                ("Position", t.tire_position),
            ]
        elif r.service_type == ServiceType.MECHANICAL and r.mechanical_info:
            m = r.mechanical_info
            rows += [("Requested service", m.requested_service), ("Issue", m.description)]
        return rows

    def _section(self, title: str, rows: Sequence[Tuple[str, Optional[str]]]) -> list:
        data = [
            [Paragraph(escape(label), self.label_style), Paragraph(escape(str(value)), self.value_style)]
            for label, value in rows
            if value not in (None, "")
        ]
        if not data:
            return []
        table = Table(data, colWidths=[1.8 * inch, 5.2 * inch])
        table.setStyle(TableStyle([
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor("#e2e8f0")),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
        ]))
        return [Paragraph(title, self.header_style), table]

    def _ts(self) -> str:
        return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


def _yes_no(value: Optional[bool]) -> Optional[str]:
    if value is None:
        return None
    return "yes" if value else "no"
