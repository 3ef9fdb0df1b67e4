from decimal import Decimal

from clinic_billing.models.billing import Invoice, InvoiceType
from clinic_billing.schemas.billing import SourceInvoiceCreateIn
from clinic_billing.services.billing_invoice_create import create_source_invoice
from clinic_billing.services.billing_receipt import project_receipt
from clinic_billing.services.pdf_receipt import build_receipt_pdf
from clinic_billing.utils.timezone import utcnow

from conftest import add_treatment, past


def _procedure(db, seed, **body):
    t1 = add_treatment(db, seed.p1, seed.dentist_x, estimated=Decimal("100"),
                       procedure_name="Scaling")
    t2 = add_treatment(db, seed.p1, seed.dentist_x, estimated=Decimal("200"),
                       procedure_name="Crown prep")
    return create_source_invoice(
        db,
        invoice_type=InvoiceType.PROCEDURE,
        inp=SourceInvoiceCreateIn.model_validate({
            "treatmentIds": [t1.id, t2.id],
            **body
        }),
        user=seed.desk,
    )


def test_projection_sections(db, seed):
    inv = _procedure(db, seed, tax="15", discount="5", paidAmount="60")

    r = project_receipt(inv, "DentalVerse Elite")

    assert r["clinic"] == {"name": "DentalVerse Elite"}
    assert r["patient"]["name"] == "Maya Iyer"
    assert r["patient"]["phone"] == "555-0101"
    assert r["invoice"]["invoiceNumber"] == inv.invoice_number
    assert r["invoice"]["invoiceType"] == "procedure"
    assert r["invoice"]["isOverdue"] is False
    assert [i["lineTotal"] for i in r["items"]] == ["100.00", "200.00"]
    assert r["financial"] == {
        "subtotal": "300.00",
        "tax": "15.00",
        "discount": "5.00",
        "total": "310.00",
        "paidAmount": "60.00",
        "balance": "250.00",
        "overpaid": "0.00",
    }
    assert len(r["context"]["procedures"]) == 2


def test_projection_is_repeatable(db, seed):
    inv = _procedure(db, seed)
    as_of = utcnow()

    assert project_receipt(inv, "Clinic", as_of) == project_receipt(
        inv, "Clinic", as_of)


def test_projection_recomputes_from_lines(db, seed):
    inv = _procedure(db, seed)
    inv.subtotal = Decimal("1")
    inv.total = Decimal("1")

    r = project_receipt(inv, "Clinic")

    assert r["financial"]["subtotal"] == "300.00"
    assert r["financial"]["total"] == "300.00"
    db.rollback()


def test_projection_without_lines_uses_stored_subtotal():
    inv = Invoice(invoice_number="INV-LEGACY", invoice_type="generic",
                  patient_name="Walk-in", subtotal=Decimal("70"),
                  tax=Decimal("0"), discount=Decimal("10"),
                  paid_amount=Decimal("0"), status="pending")

    r = project_receipt(inv, "Clinic")

    assert r["items"] == []
    assert r["financial"]["subtotal"] == "70.00"
    assert r["financial"]["total"] == "60.00"
    assert r["patient"]["name"] == "Walk-in"


def test_projection_flags_overdue(db, seed):
    inv = _procedure(db, seed, dueDate=past(1).isoformat())

    r = project_receipt(inv, "Clinic")

    assert r["invoice"]["isOverdue"] is True
    assert r["invoice"]["status"] == "overdue"


def test_projection_reports_overpayment(db, seed):
    inv = _procedure(db, seed, paidAmount="320")

    r = project_receipt(inv, "Clinic")

    assert r["invoice"]["status"] == "paid"
    assert r["financial"]["balance"] == "0.00"
    assert r["financial"]["overpaid"] == "20.00"


def test_pdf_rendering(db, seed):
    inv = _procedure(db, seed, notes="Two-visit plan")

    pdf = build_receipt_pdf(project_receipt(inv, "DentalVerse Elite"))

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 500
