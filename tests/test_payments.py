from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient

from app.api.v1.fees.billing import generate_billing
from app.auth.security import create_access_token


async def _billed_record(db_session, seed, registration_number="ADM100", amount=20000):
    class_c = await seed.school_class()
    student_id = await seed.student(registration_number, [class_c])
    fs_id = await seed.fee_structure("Tuition Term1", amount, [class_c])
    result = await generate_billing(db_session, fs_id)
    return student_id, result.created[0]


@pytest.mark.asyncio
async def test_full_payment_then_overpayment(client: AsyncClient, admin_headers, admin_id, db_session, seed) -> None:
    student_id, record_id = await _billed_record(db_session, seed)

    response = await client.post(
        "/api/v1/fees/payments",
        json={"ledger_record_id": str(record_id), "amount": 20000, "method": "Cash", "reference": "RCPT-001"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "matched"
    assert data["ledger_record_id"] == str(record_id)
    assert Decimal(data["updated_balance"]) == 0
    assert data["ledger_record"]["status"] == "paid"
    assert Decimal(data["ledger_record"]["total_paid"]) == Decimal("20000")
    assert data["payment"]["method"] == "CASH"
    assert data["payment"]["source"] == "manual"
    assert data["payment"]["recorded_by"] == str(admin_id)

    response = await client.post(
        "/api/v1/fees/payments",
        json={"ledger_record_id": str(record_id), "amount": "5000", "method": "MPESA"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert Decimal(data["credit_generated"]) == Decimal("5000")
    assert data["ledger_record"]["status"] == "overpaid"

    record = await seed.record_by_id(record_id)
    assert record.total_paid == Decimal("25000")
    assert record.outstanding_balance == Decimal("0")
    assert record.credit_generated == Decimal("5000")
    assert record.last_payment_date is not None
    await seed.assert_ledger_consistent(student_id)


@pytest.mark.asyncio
async def test_partial_payment(client: AsyncClient, admin_headers, db_session, seed) -> None:
    _, record_id = await _billed_record(db_session, seed)
    response = await client.post(
        "/api/v1/fees/payments",
        json={"ledger_record_id": str(record_id), "amount": "1250.50", "method": "BANK_TRANSFER"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    assert response.json()["ledger_record"]["status"] == "partial"
    assert Decimal(response.json()["updated_balance"]) == Decimal("18749.50")


@pytest.mark.asyncio
async def test_unknown_ledger_record_is_404(client: AsyncClient, admin_headers) -> None:
    response = await client.post(
        "/api/v1/fees/payments",
        json={"ledger_record_id": str(uuid4()), "amount": 100, "method": "CASH"},
        headers=admin_headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"amount": 0, "method": "CASH"},
        {"amount": -10, "method": "CASH"},
        {"amount": 100},
        {"amount": 100, "method": ""},
        {"method": "CASH"},
    ],
)
async def test_invalid_manual_payment_is_400(client: AsyncClient, admin_headers, db_session, seed, body) -> None:
    _, record_id = await _billed_record(db_session, seed)
    response = await client.post(
        "/api/v1/fees/payments",
        json={"ledger_record_id": str(record_id), **body},
        headers=admin_headers,
    )
    assert response.status_code == 400
    assert await seed.payments() == []


@pytest.mark.asyncio
async def test_duplicate_manual_reference_is_conflict(client: AsyncClient, admin_headers, db_session, seed) -> None:
    _, record_id = await _billed_record(db_session, seed)
    body = {"ledger_record_id": str(record_id), "amount": 1000, "method": "CHEQUE", "reference": "CHQ-77"}

    first = await client.post("/api/v1/fees/payments", json=body, headers=admin_headers)
    second = await client.post("/api/v1/fees/payments", json=body, headers=admin_headers)
    assert first.status_code == 201
    assert second.status_code == 409
    assert len(await seed.payments(transaction_reference="CHQ-77")) == 1
    assert (await seed.record_by_id(record_id)).total_paid == Decimal("1000")


@pytest.mark.asyncio
async def test_payments_require_auth_and_permission(client: AsyncClient, db_session, seed) -> None:
    _, record_id = await _billed_record(db_session, seed)
    body = {"ledger_record_id": str(record_id), "amount": 100, "method": "CASH"}

    anonymous = await client.post("/api/v1/fees/payments", json=body)
    assert anonymous.status_code == 401

    reader_token = create_access_token(
        subject={"sub": str(uuid4()), "role": "BURSAR", "permissions": {"fees": {"read": True}}}
    )
    reader = await client.post("/api/v1/fees/payments", json=body, headers={"Authorization": f"Bearer {reader_token}"})
    assert reader.status_code == 403

    bursar_token = create_access_token(
        subject={"sub": str(uuid4()), "role": "BURSAR", "permissions": {"fees": {"read": True, "create": True}}}
    )
    bursar = await client.post("/api/v1/fees/payments", json=body, headers={"Authorization": f"Bearer {bursar_token}"})
    assert bursar.status_code == 201


@pytest.mark.asyncio
async def test_reversal_flows_back_through_aggregator(client: AsyncClient, admin_headers, db_session, seed) -> None:
    student_id, record_id = await _billed_record(db_session, seed)
    paid = await client.post(
        "/api/v1/fees/payments",
        json={"ledger_record_id": str(record_id), "amount": 15000, "method": "CASH", "reference": "R-1"},
        headers=admin_headers,
    )
    await client.post(
        "/api/v1/fees/payments",
        json={"ledger_record_id": str(record_id), "amount": 5000, "method": "CASH", "reference": "R-2"},
        headers=admin_headers,
    )
    payment_id = paid.json()["payment"]["id"]

    reversed_ = await client.post(
        f"/api/v1/fees/payments/{payment_id}/reverse",
        json={"reason": "Cheque bounced"},
        headers=admin_headers,
    )
    assert reversed_.status_code == 200
    data = reversed_.json()
    assert data["payment"]["status"] == "reversed"
    assert data["payment"]["reversal_reason"] == "Cheque bounced"
    assert Decimal(data["ledger_record"]["total_paid"]) == Decimal("5000")
    assert Decimal(data["updated_balance"]) == Decimal("15000")
    assert data["ledger_record"]["status"] == "partial"

    again = await client.post(
        f"/api/v1/fees/payments/{payment_id}/reverse",
        json={"reason": "Twice"},
        headers=admin_headers,
    )
    assert again.status_code == 409

    missing = await client.post(
        f"/api/v1/fees/payments/{uuid4()}/reverse",
        json={"reason": "Nope"},
        headers=admin_headers,
    )
    assert missing.status_code == 404

    history = await client.get(f"/api/v1/fees/payment-history/{student_id}", headers=admin_headers)
    assert [p["transaction_reference"] for p in history.json()] == ["R-2"]
    full = await client.get(
        f"/api/v1/fees/payment-history/{student_id}",
        params={"include_reversed": True},
        headers=admin_headers,
    )
    assert sorted(p["transaction_reference"] for p in full.json()) == ["R-1", "R-2"]
    await seed.assert_ledger_consistent(student_id)


@pytest.mark.asyncio
async def test_ledger_read_endpoints(client: AsyncClient, admin_headers, db_session, seed) -> None:
    student_id, record_id = await _billed_record(db_session, seed)
    await client.post(
        "/api/v1/fees/payments",
        json={"ledger_record_id": str(record_id), "amount": 20000, "method": "CASH"},
        headers=admin_headers,
    )

    one = await client.get(f"/api/v1/fees/ledger/{record_id}", headers=admin_headers)
    assert one.status_code == 200
    assert one.json()["status"] == "paid"

    listed = await client.get(
        "/api/v1/fees/ledger", params={"student_id": str(student_id), "status": "paid"}, headers=admin_headers
    )
    assert [r["id"] for r in listed.json()] == [str(record_id)]
    none_pending = await client.get("/api/v1/fees/ledger", params={"status": "pending"}, headers=admin_headers)
    assert none_pending.json() == []

    verify = await client.get(f"/api/v1/fees/ledger/{record_id}/verify", headers=admin_headers)
    assert verify.json() == {"ledger_record_id": str(record_id), "consistent": True, "detail": None}

    assert (await client.get(f"/api/v1/fees/ledger/{uuid4()}", headers=admin_headers)).status_code == 404


@pytest.mark.asyncio
async def test_student_summary_rolls_up_terms(client: AsyncClient, admin_headers, db_session, seed) -> None:
    class_c = await seed.school_class()
    student_id = await seed.student("ADM150", [class_c])
    term1 = await seed.fee_structure("Tuition T1", 20000, [class_c], term="Term 1")
    term2 = await seed.fee_structure("Tuition T2", 20000, [class_c], term="Term 2")
    record1 = (await generate_billing(db_session, term1)).created[0]
    await generate_billing(db_session, term2)

    await client.post(
        "/api/v1/fees/payments",
        json={"ledger_record_id": str(record1), "amount": 45000, "method": "CASH"},
        headers=admin_headers,
    )

    response = await client.get(f"/api/v1/fees/students/{student_id}/summary", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["registration_number"] == "ADM150"
    assert Decimal(data["total_billed"]) == Decimal("40000")
    assert Decimal(data["total_paid"]) == Decimal("45000")
    assert Decimal(data["total_credit_applied"]) == Decimal("20000")
    assert Decimal(data["outstanding_balance"]) == Decimal("0")
    assert Decimal(data["available_credit"]) == Decimal("5000")
    assert data["academic_years"] == ["2024-2025"]
    assert [r["term"] for r in data["records"]] == ["Term 1", "Term 2"]

    missing = await client.get(f"/api/v1/fees/students/{uuid4()}/summary", headers=admin_headers)
    assert missing.status_code == 404
