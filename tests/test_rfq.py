from datetime import date

import pytest

from gccore.errors import NotFoundError
from gccore.models import RFQStatus
from gcbid.bom import BOMGenerator
from gcbid.rfq import EmailSender, OutboxSender, create_rfq, prepare_rfq_email, render_rfq_email, send_rfq


class RecordingSender(EmailSender):
    def __init__(self, accept=True):
        self.accept = accept
        self.sent = []

    def send(self, recipient, subject, body):
        self.sent.append((recipient, subject, body))
        return self.accept


@pytest.fixture
def bom(store, project, takeoff, vendors):
    for vendor in vendors:
        store.upsert_vendor(vendor)
    return BOMGenerator(store, takeoff).generate(project.id)


def test_create_rfq_snapshots_bom_lines(store, project, bom):
    item = bom.items[0]
    rfq = create_rfq(store, project.id, "ven-arch", [item.id, "bom-missing"], due_in_days=7)

    assert rfq.status is RFQStatus.DRAFT
    assert rfq.rfq_number.startswith("RFQ-")
    assert rfq.subject == f"Request for Quote - {rfq.rfq_number}"
    assert rfq.due_date is not None
    (line,) = store.get_rfq(rfq.id).items
    assert line.bom_item_id == item.id
    assert line.quantity == pytest.approx(item.final_quantity)
    assert line.description == item.description


def test_create_rfq_without_valid_items_raises(store, project, bom):
    with pytest.raises(NotFoundError):
        create_rfq(store, project.id, "ven-arch", ["bom-missing"])


def test_render_substitutes_both_variable_styles(store, project, bom):
    rfq = create_rfq(store, project.id, "ven-arch", [bom.items[0].id], due_date=date(2025, 3, 14))
    template = "{{vendorName}} / {{PROJECT_NAME}} / {{rfqNumber}} / {{dueDate}} / {{materialList}}"

    rendered = render_rfq_email(rfq, store.get_project(project.id), store.get_vendor("ven-arch"), template)

    assert rendered.recipient == "quotes@abc.example"
    assert rendered.body.startswith(f"ABC Building Supply / Main Street Clinic / {rfq.rfq_number} / 03/14/2025 / <table")
    assert "VCT Flooring 12x12" in rendered.body
    assert "{{" not in rendered.body


def test_render_uses_stored_template_and_tbd_due_date(store, project, bom):
    store.upsert_email_template("RFQ", "<p>{{VENDOR_NAME}} due {{DUE_DATE}}</p>")
    rfq = create_rfq(store, project.id, "ven-arch", [bom.items[0].id])

    rendered = prepare_rfq_email(store, rfq.id)

    assert rendered.body == "<p>ABC Building Supply due TBD</p>"


def test_send_marks_rfq_sent_only_on_success(store, project, bom):
    rfq = create_rfq(store, project.id, "ven-arch", [bom.items[0].id])

    failed = send_rfq(store, rfq.id, RecordingSender(accept=False))
    assert failed.sent is False
    assert store.get_rfq(rfq.id).status is RFQStatus.DRAFT

    sender = RecordingSender()
    result = send_rfq(store, rfq.id, sender)
    assert result.sent is True
    assert sender.sent[0][0] == "quotes@abc.example"
    stored = store.get_rfq(rfq.id)
    assert stored.status is RFQStatus.SENT
    assert stored.sent_at is not None


def test_send_skips_vendor_without_email(store, project, bom):
    rfq = create_rfq(store, project.id, "ven-full", [bom.items[0].id])
    sender = RecordingSender()

    result = send_rfq(store, rfq.id, sender)

    assert result.sent is False
    assert sender.sent == []
    assert store.get_rfq(rfq.id).status is RFQStatus.DRAFT


def test_outbox_sender_writes_html(tmp_path, store, project, bom):
    rfq = create_rfq(store, project.id, "ven-arch", [bom.items[0].id])

    result = send_rfq(store, rfq.id, OutboxSender(tmp_path / "outbox"))

    assert result.sent is True
    written = list((tmp_path / "outbox").glob("*.html"))
    assert len(written) == 1
    assert "quotes@abc.example" in written[0].read_text(encoding="utf-8")
