"""RFQ creation and email payload preparation."""

from __future__ import annotations

import html
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional, Sequence

from gccore.errors import NotFoundError
from gccore.models import Project, RFQ, RFQItem, RFQStatus, Vendor
from gccore.store import Store
from gccore.utils import document_number, new_id, utc_now

logger = logging.getLogger(__name__)

TEMPLATE_TYPE = "RFQ"

DEFAULT_RFQ_TEMPLATE = """<html>
  <body style="font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px;">
    <h2>Request for Quote</h2>
    <p>Dear {{VENDOR_NAME}},</p>
    <p><strong>Project:</strong> {{PROJECT_NAME}}</p>
    <p><strong>RFQ Number:</strong> {{RFQ_NUMBER}}</p>
    <p><strong>Due Date:</strong> {{DUE_DATE}}</p>
    <h3>Materials Required:</h3>
    {{MATERIALS_TABLE}}
    <p>Please provide your best pricing for the materials listed above.</p>
    <p>Reply to this email with your quote.</p>
  </body>
</html>
"""

_CELL = 'style="padding: 12px; border: 1px solid #e5e7eb;"'
_CELL_RIGHT = 'style="padding: 12px; text-align: right; border: 1px solid #e5e7eb;"'


@dataclass
class RenderedRFQ:
    recipient: Optional[str]
    subject: str
    body: str


@dataclass
class SendResult:
    rfq_id: str
    rendered: RenderedRFQ
    sent: bool


class EmailSender(ABC):
    """Transport collaborator; retries and delivery are its concern."""

    @abstractmethod
    def send(self, recipient: str, subject: str, body: str) -> bool:
        """Send the message and report whether it was accepted."""


class OutboxSender(EmailSender):
    """Write each message to an HTML file instead of delivering it."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def send(self, recipient: str, subject: str, body: str) -> bool:
        self.directory.mkdir(parents=True, exist_ok=True)
        safe_subject = "".join(char if char.isalnum() or char in "-_" else "_" for char in subject)
        path = self.directory / f"{safe_subject}.html"
        path.write_text(f"<!-- To: {recipient} | Subject: {subject} -->\n{body}", encoding="utf-8")
        logger.info("Wrote RFQ email for %s to %s", recipient, path)
        return True


def create_rfq(
    store: Store,
    project_id: str,
    vendor_id: str,
    bom_item_ids: Sequence[str],
    due_date: Optional[date] = None,
    due_in_days: Optional[int] = None,
) -> RFQ:
    """Create a draft RFQ holding a snapshot of the referenced BOM lines."""

    store.get_project(project_id)
    store.get_vendor(vendor_id)
    lookup = store.get_bom_items(list(bom_item_ids))

    rfq_id = new_id("rfq")
    items: List[RFQItem] = []
    for bom_item_id in bom_item_ids:
        bom_item = lookup.get(bom_item_id)
        if bom_item is None or bom_item.project_id != project_id:
            logger.warning("Skipping unknown BOM item '%s' for RFQ on project %s", bom_item_id, project_id)
            continue
        items.append(
            RFQItem(
                id=new_id("rqi"),
                rfq_id=rfq_id,
                bom_item_id=bom_item.id,
                quantity=bom_item.final_quantity,
                uom=bom_item.uom,
                description=bom_item.description,
            )
        )
    if not items:
        raise NotFoundError(f"None of the requested BOM items belong to project '{project_id}'")

    if due_date is None and due_in_days is not None:
        due_date = utc_now().date() + timedelta(days=due_in_days)
    rfq_number = document_number("RFQ")
    rfq = store.create_rfq(
        RFQ(
            id=rfq_id,
            project_id=project_id,
            vendor_id=vendor_id,
            rfq_number=rfq_number,
            subject=f"Request for Quote - {rfq_number}",
            status=RFQStatus.DRAFT,
            due_date=due_date,
            items=tuple(items),
        )
    )
    logger.info("Created %s for vendor %s with %d item(s)", rfq_number, vendor_id, len(items))
    return rfq


def render_materials_table(items: Sequence[RFQItem]) -> str:
    rows = "".join(
        "<tr>"
        f"<td {_CELL}>{index}</td>"
        f"<td {_CELL}>{html.escape(item.description)}</td>"
        f"<td {_CELL_RIGHT}>{item.quantity:.2f}</td>"
        f"<td {_CELL}>{html.escape(item.uom or '')}</td>"
        "</tr>\n"
        for index, item in enumerate(items, start=1)
    )
    return (
        '<table style="width: 100%; border-collapse: collapse; margin: 20px 0;">\n'
        '<thead><tr style="background-color: #f3f4f6;">'
        f"<th {_CELL}>Item</th><th {_CELL}>Description</th>"
        f"<th {_CELL_RIGHT}>Quantity</th><th {_CELL}>UOM</th>"
        "</tr></thead>\n"
        f"<tbody>\n{rows}</tbody>\n</table>"
    )


def render_rfq_email(rfq: RFQ, project: Project, vendor: Vendor, template: Optional[str] = None) -> RenderedRFQ:
    """Substitute every template variable; both naming styles are accepted."""

    body = template or DEFAULT_RFQ_TEMPLATE
    due = rfq.due_date.strftime("%m/%d/%Y") if rfq.due_date else "TBD"
    table = render_materials_table(rfq.items)
    values = {
        "PROJECT_NAME": html.escape(project.name),
        "RFQ_NUMBER": rfq.rfq_number,
        "DUE_DATE": due,
        "VENDOR_NAME": html.escape(vendor.name),
        "MATERIALS_TABLE": table,
        "projectName": html.escape(project.name),
        "rfqNumber": rfq.rfq_number,
        "dueDate": due,
        "vendorName": html.escape(vendor.name),
        "materialList": table,
    }
    for key, value in values.items():
        body = body.replace("{{" + key + "}}", value)
    return RenderedRFQ(recipient=vendor.email, subject=rfq.subject, body=body)


def prepare_rfq_email(store: Store, rfq_id: str) -> RenderedRFQ:
    rfq = store.get_rfq(rfq_id)
    project = store.get_project(rfq.project_id)
    vendor = store.get_vendor(rfq.vendor_id)
    template = store.get_email_template(TEMPLATE_TYPE)
    return render_rfq_email(rfq, project, vendor, template["body"] if template else None)


def send_rfq(store: Store, rfq_id: str, sender: EmailSender) -> SendResult:
    """Hand the rendered RFQ to ``sender``; mark it sent only on success."""

    rendered = prepare_rfq_email(store, rfq_id)
    if not rendered.recipient:
        logger.warning("RFQ %s not sent: vendor has no email address", rfq_id)
        return SendResult(rfq_id=rfq_id, rendered=rendered, sent=False)

    sent = bool(sender.send(rendered.recipient, rendered.subject, rendered.body))
    if sent:
        store.set_rfq_status(rfq_id, RFQStatus.SENT, sent_at=utc_now())
        logger.info("RFQ %s sent to %s", rfq_id, rendered.recipient)
    else:
        logger.warning("Sender reported failure for RFQ %s; status left unchanged", rfq_id)
    return SendResult(rfq_id=rfq_id, rendered=rendered, sent=sent)


__all__ = [
    "DEFAULT_RFQ_TEMPLATE",
    "EmailSender",
    "OutboxSender",
    "RenderedRFQ",
    "SendResult",
    "create_rfq",
    "prepare_rfq_email",
    "render_materials_table",
    "render_rfq_email",
    "send_rfq",
]
