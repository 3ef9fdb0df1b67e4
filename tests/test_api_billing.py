from decimal import Decimal

from clinic_billing.core.config import settings
from clinic_billing.models import LabWork, User

from conftest import add_appointment, add_lab_work, add_treatment, auth

API = settings.API_V1_STR


def _create_checkup(client, db, seed, fee="80", user=None):
    appt = add_appointment(db, seed.p1, seed.dentist_x, fee=Decimal(fee))
    res = client.post(f"{API}/billing/checkup",
                      json={"appointmentId": appt.id},
                      headers=auth(user or seed.desk))
    assert res.status_code == 201, res.text
    return res.json()["data"]["invoice"]


def test_requires_token(client, seed):
    res = client.get(f"{API}/billing/invoices")
    assert res.status_code == 401
    assert res.json()["ok"] is False

    res = client.get(f"{API}/billing/invoices",
                     headers={"Authorization": "Bearer not-a-token"})
    assert res.status_code == 401


def test_role_without_billing_access_is_forbidden(client, seed):
    res = client.get(f"{API}/billing/invoices", headers=auth(seed.assistant))
    assert res.status_code == 403


def test_checkup_create_and_pay_flow(client, db, seed):
    inv = _create_checkup(client, db, seed)
    assert inv["status"] == "pending"
    assert Decimal(inv["total"]) == Decimal("80")
    assert Decimal(inv["balance"]) == Decimal("80")
    assert inv["sourceContext"]["kind"] == "checkup"
    assert inv["sourceContext"]["sourceKind"] == "appointment"

    res = client.post(f"{API}/billing/payments",
                      json={
                          "invoiceId": inv["id"],
                          "amount": 30,
                          "paymentMethod": "cash"
                      },
                      headers=auth(seed.desk))
    assert res.status_code == 200, res.text
    data = res.json()["data"]
    assert data["payment"]["paymentNumber"] == "PAY-000001"
    assert data["invoice"]["status"] == "partially-paid"
    assert Decimal(data["invoice"]["balance"]) == Decimal("50")

    res = client.post(f"{API}/billing/payments",
                      json={"invoiceId": inv["id"], "amount": "50"},
                      headers=auth(seed.desk))
    assert res.json()["data"]["invoice"]["status"] == "paid"

    res = client.get(f"{API}/billing/invoices/{inv['id']}/payments",
                     headers=auth(seed.desk))
    assert [Decimal(p["amount"]) for p in res.json()["data"]["payments"]
            ] == [Decimal("30"), Decimal("50")]


def test_payment_idempotency_header(client, db, seed):
    inv = _create_checkup(client, db, seed)
    body = {"invoiceId": inv["id"], "amount": "25"}
    headers = {**auth(seed.desk), "Idempotency-Key": "till-7-0001"}

    first = client.post(f"{API}/billing/payments", json=body, headers=headers)
    second = client.post(f"{API}/billing/payments", json=body, headers=headers)

    assert first.status_code == second.status_code == 200
    assert (first.json()["data"]["payment"]["id"] ==
            second.json()["data"]["payment"]["id"])
    assert Decimal(second.json()["data"]["invoice"]["paidAmount"]) == Decimal(
        "25")


def test_invalid_payments(client, db, seed):
    inv = _create_checkup(client, db, seed)

    res = client.post(f"{API}/billing/payments",
                      json={"invoiceId": inv["id"], "amount": 0},
                      headers=auth(seed.desk))
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "VALIDATION_ERROR"

    res = client.post(f"{API}/billing/payments",
                      json={"amount": 10},
                      headers=auth(seed.desk))
    assert res.status_code == 422

    res = client.post(f"{API}/billing/payments",
                      json={"invoiceId": 4040, "amount": 10},
                      headers=auth(seed.desk))
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "NOT_FOUND"


def test_double_billing_is_conflict(client, db, seed):
    appt = add_appointment(db, seed.p1, seed.dentist_x, fee=Decimal("80"))
    body = {"appointmentId": appt.id}

    assert client.post(f"{API}/billing/checkup", json=body,
                       headers=auth(seed.desk)).status_code == 201
    res = client.post(f"{API}/billing/checkup", json=body,
                      headers=auth(seed.desk))

    assert res.status_code == 409
    assert res.json()["error"]["code"] == "ALREADY_BILLED"


def test_missing_fee_is_generic_server_error(client, db, seed, monkeypatch):
    monkeypatch.setattr(settings, "BILLING_DEFAULT_FEE_CHECKUP", None)
    appt = add_appointment(db, seed.p1, seed.dentist_y)

    res = client.post(f"{API}/billing/checkup",
                      json={"appointmentId": appt.id},
                      headers=auth(seed.desk))

    assert res.status_code == 500
    err = res.json()["error"]
    assert err["code"] == "CONFIGURATION_ERROR"
    assert "fee" not in err["msg"]


def test_procedure_create_returns_advance_info(client, db, seed):
    t1 = add_treatment(db, seed.p1, seed.dentist_x, estimated=Decimal("100"))
    t2 = add_treatment(db, seed.p1, seed.dentist_x, estimated=Decimal("200"))

    res = client.post(f"{API}/billing/procedure",
                      json={
                          "treatmentIds": [t1.id, t2.id],
                          "advancePaymentPercentage": 40
                      },
                      headers=auth(seed.desk))

    assert res.status_code == 201, res.text
    data = res.json()["data"]
    assert Decimal(data["invoice"]["subtotal"]) == Decimal("300")
    assert Decimal(data["advanceInfo"]["required"]) == Decimal("120")
    assert Decimal(data["advanceInfo"]["percentage"]) == Decimal("40")


def test_update_ignores_total_and_status(client, db, seed):
    inv = _create_checkup(client, db, seed)

    res = client.put(f"{API}/billing/checkup/{inv['id']}",
                     json={
                         "checkupFee": 100,
                         "total": 1,
                         "status": "paid"
                     },
                     headers=auth(seed.desk))

    assert res.status_code == 200, res.text
    out = res.json()["data"]["invoice"]
    assert Decimal(out["total"]) == Decimal("100")
    assert out["status"] == "pending"

    res = client.put(f"{API}/billing/lab/{inv['id']}",
                     json={"labCost": 5},
                     headers=auth(seed.desk))
    assert res.status_code == 400


def test_dentist_scope_over_http(client, db, seed):
    inv = _create_checkup(client, db, seed)

    res = client.get(f"{API}/billing/invoices/{inv['id']}",
                     headers=auth(seed.dentist_y))
    assert res.status_code == 404
    assert res.json()["error"]["code"] == "NOT_FOUND"

    res = client.get(f"{API}/billing/invoices/{inv['id']}",
                     headers=auth(seed.dentist_x))
    assert res.status_code == 200

    res = client.get(f"{API}/billing/invoices", headers=auth(seed.dentist_y))
    assert res.json()["data"]["invoices"] == []


def test_list_filters(client, db, seed):
    inv = _create_checkup(client, db, seed)

    res = client.get(f"{API}/billing/invoices",
                     params={"status": "pending", "invoiceType": "checkup"},
                     headers=auth(seed.admin))
    assert [i["id"] for i in res.json()["data"]["invoices"]] == [inv["id"]]
    assert res.json()["meta"] == {"count": 1}

    res = client.get(f"{API}/billing/invoices",
                     params={"status": "overdue"},
                     headers=auth(seed.admin))
    assert res.json()["data"]["invoices"] == []


def test_generic_invoice_needs_front_desk(client, db, seed):
    body = {
        "patientId": seed.p2.id,
        "items": [{
            "description": "Night guard",
            "quantity": 1,
            "unitPrice": "75"
        }],
    }

    res = client.post(f"{API}/billing/invoices", json=body,
                      headers=auth(seed.dentist_x))
    assert res.status_code == 403

    res = client.post(f"{API}/billing/invoices", json=body,
                      headers=auth(seed.desk))
    assert res.status_code == 201
    assert res.json()["data"]["invoice"]["patientName"] == "Tom Otis"


def test_superadmin_counts_as_front_desk(client, db, seed):
    root = User(first_name="Sam", last_name="Root", email="root@clinic.test",
                role="superadmin")
    db.add(root)
    db.commit()
    inv = _create_checkup(client, db, seed)

    res = client.post(f"{API}/billing/invoices",
                      json={
                          "patientId": seed.p2.id,
                          "items": [{
                              "description": "Whitening kit",
                              "quantity": 1,
                              "unitPrice": "40"
                          }],
                      },
                      headers=auth(root))
    assert res.status_code == 201, res.text

    res = client.post(f"{API}/billing/invoices/{inv['id']}/cancel",
                      headers=auth(root))
    assert res.json()["data"]["invoice"]["status"] == "cancelled"


def test_cancel_and_reopen(client, db, seed):
    inv = _create_checkup(client, db, seed)

    res = client.post(f"{API}/billing/invoices/{inv['id']}/cancel",
                      headers=auth(seed.desk))
    assert res.json()["data"]["invoice"]["status"] == "cancelled"

    res = client.post(f"{API}/billing/payments",
                      json={"invoiceId": inv["id"], "amount": 10},
                      headers=auth(seed.desk))
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "INVOICE_CANCELLED"

    res = client.post(f"{API}/billing/invoices/{inv['id']}/reopen",
                      headers=auth(seed.desk))
    assert res.json()["data"]["invoice"]["status"] == "pending"


def test_delete_lab_invoice(client, db, seed):
    orders = [
        add_lab_work(db, seed.p1, seed.dentist_x, cost=Decimal("30"))
        for _ in range(3)
    ]
    res = client.post(f"{API}/billing/lab",
                      json={"labWorkIds": [o.id for o in orders]},
                      headers=auth(seed.desk))
    invoice_id = res.json()["data"]["invoice"]["id"]

    res = client.delete(f"{API}/billing/lab/{invoice_id}",
                        headers=auth(seed.desk))
    assert res.status_code == 200

    db.expire_all()
    assert all(o.invoice_id is None for o in db.query(LabWork).all())
    res = client.get(f"{API}/billing/lab/{invoice_id}",
                     headers=auth(seed.desk))
    assert res.status_code == 404


def test_unbilled_listing(client, db, seed):
    add_lab_work(db, seed.p1, seed.dentist_x, cost=Decimal("30"))

    res = client.get(f"{API}/billing/lab/unbilled",
                     params={"patientId": seed.p1.id},
                     headers=auth(seed.dentist_x))

    assert res.status_code == 200
    rows = res.json()["data"]["records"]
    assert len(rows) == 1
    assert rows[0]["kind"] == "lab_work"

    res = client.get(f"{API}/billing/lab/unbilled",
                     headers=auth(seed.dentist_y))
    assert res.json()["data"]["records"] == []


def test_unknown_kind(client, seed):
    res = client.post(f"{API}/billing/ortho", json={"sourceIds": [1]},
                      headers=auth(seed.desk))
    assert res.status_code == 404


def test_receipt_json_and_pdf(client, db, seed):
    inv = _create_checkup(client, db, seed)

    res = client.get(f"{API}/billing/checkup/{inv['id']}/receipt",
                     headers=auth(seed.desk))
    assert res.status_code == 200
    receipt = res.json()["data"]["receipt"]
    assert receipt["clinic"]["name"] == settings.CLINIC_NAME
    assert receipt["financial"]["total"] == "80.00"

    res = client.get(f"{API}/billing/checkup/{inv['id']}/receipt/pdf",
                     headers=auth(seed.desk))
    assert res.status_code == 200
    assert res.headers["content-type"] == "application/pdf"
    assert res.content.startswith(b"%PDF")
