from decimal import Decimal

import pytest

from app.api.v1.fee_structures.schemas import FeeStructureUpdate
from app.api.v1.fee_structures.service import update_fee_structure
from app.api.v1.fees.billing import generate_billing
from app.api.v1.fees.credit import resolve_student_credit
from app.api.v1.fees.schemas import ManualPaymentCreate
from app.api.v1.fees.service import record_manual_payment, reverse_payment
from app.core.enums import CreditTargetPolicy


async def _pay(db_session, record_id, amount, reference=None):
    return await record_manual_payment(
        db_session,
        ManualPaymentCreate(ledger_record_id=record_id, amount=Decimal(str(amount)), method="CASH", reference=reference),
    )


@pytest.mark.asyncio
async def test_term1_surplus_carries_into_term2_bill(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM200", [class_c])
    term1 = await seed.fee_structure("Tuition Term1", 20000, [class_c], term="Term 1")
    record1 = (await generate_billing(db_session, term1)).created[0]
    await _pay(db_session, record1, 20000)
    await _pay(db_session, record1, 5000)

    term2 = await seed.fee_structure("Tuition Term2", 20000, [class_c], term="Term 2")
    record2 = (await generate_billing(db_session, term2)).created[0]

    r2 = await seed.record_by_id(record2)
    assert r2.total_paid == Decimal("0")
    assert r2.credit_applied == Decimal("5000")
    assert r2.outstanding_balance == Decimal("15000")
    assert r2.status == "partial"

    r1 = await seed.record_by_id(record1)
    assert r1.credit_generated == Decimal("5000")
    assert r1.credit_consumed == Decimal("5000")
    assert r1.status == "overpaid"

    transfers = await seed.transfers(s)
    assert [(t.source_record_id, t.target_record_id, t.amount) for t in transfers] == [
        (record1, record2, Decimal("5000"))
    ]
    await seed.assert_ledger_consistent(s)


@pytest.mark.asyncio
async def test_overpayment_after_later_bill_exists(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM201", [class_c])
    term1 = await seed.fee_structure("T1", 10000, [class_c], term="Term 1")
    term2 = await seed.fee_structure("T2", 10000, [class_c], term="Term 2")
    record1 = (await generate_billing(db_session, term1)).created[0]
    record2 = (await generate_billing(db_session, term2)).created[0]

    await _pay(db_session, record1, 13000)

    r2 = await seed.record_by_id(record2)
    assert r2.credit_applied == Decimal("3000")
    assert r2.outstanding_balance == Decimal("7000")
    await seed.assert_ledger_consistent(s)


@pytest.mark.asyncio
async def test_credit_spills_over_several_later_terms(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM202", [class_c])
    ids = []
    for term in ("Term 1", "Term 2", "Term 3"):
        fs_id = await seed.fee_structure(f"Tuition {term}", 20000, [class_c], term=term)
        ids.append((await generate_billing(db_session, fs_id)).created[0])

    await _pay(db_session, ids[0], 50000)

    r2 = await seed.record_by_id(ids[1])
    r3 = await seed.record_by_id(ids[2])
    assert r2.credit_applied == Decimal("20000") and r2.status == "paid"
    assert r3.credit_applied == Decimal("10000") and r3.outstanding_balance == Decimal("10000")
    r1 = await seed.record_by_id(ids[0])
    assert r1.credit_consumed == Decimal("30000") == r1.credit_generated
    await seed.assert_ledger_consistent(s)


@pytest.mark.asyncio
async def test_same_term_targets_earliest_created_first(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM203", [class_c])
    term1 = await seed.fee_structure("T1", 10000, [class_c], term="Term 1")
    record1 = (await generate_billing(db_session, term1)).created[0]
    tuition2 = await seed.fee_structure("Tuition T2", 8000, [class_c], term="Term 2")
    first_t2 = (await generate_billing(db_session, tuition2)).created[0]
    trip2 = await seed.fee_structure("Trip T2", 4000, [class_c], term="Term 2", category="Optional")
    second_t2 = (await generate_billing(db_session, trip2)).created[0]

    await _pay(db_session, record1, 19000)

    first = await seed.record_by_id(first_t2)
    second = await seed.record_by_id(second_t2)
    assert first.credit_applied == Decimal("8000")
    assert second.credit_applied == Decimal("1000")
    assert second.outstanding_balance == Decimal("3000")
    await seed.assert_ledger_consistent(s)


@pytest.mark.asyncio
async def test_same_term_sibling_only_absorbs_under_next_record_policy(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM204", [class_c])
    tuition = await seed.fee_structure("Tuition", 10000, [class_c], term="Term 1")
    tuition_record = (await generate_billing(db_session, tuition)).created[0]
    await _pay(db_session, tuition_record, 12000)

    trip = await seed.fee_structure("Trip", 3000, [class_c], term="Term 1", category="Optional")
    trip_record = (await generate_billing(db_session, trip)).created[0]
    assert (await seed.record_by_id(trip_record)).credit_applied == Decimal("0")

    movements = await resolve_student_credit(db_session, s, policy=CreditTargetPolicy.NEXT_RECORD)
    await db_session.commit()
    assert [(m.source_record_id, m.target_record_id, m.amount, m.kind) for m in movements] == [
        (tuition_record, trip_record, Decimal("2000"), "apply")
    ]
    trip_after = await seed.record_by_id(trip_record)
    assert trip_after.outstanding_balance == Decimal("1000")
    await seed.assert_ledger_consistent(s)


@pytest.mark.asyncio
async def test_resolver_is_idempotent_on_settled_student(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM205", [class_c])
    term1 = await seed.fee_structure("T1", 10000, [class_c], term="Term 1")
    term2 = await seed.fee_structure("T2", 10000, [class_c], term="Term 2")
    record1 = (await generate_billing(db_session, term1)).created[0]
    await generate_billing(db_session, term2)
    await _pay(db_session, record1, 14000)
    before = [(r.id, r.credit_applied, r.credit_consumed, r.outstanding_balance) for r in await seed.records(s)]

    assert await resolve_student_credit(db_session, s) == []
    assert await resolve_student_credit(db_session, s) == []
    await db_session.commit()
    # Regenerating billing triggers another resolver pass.
    await generate_billing(db_session, term1)
    await generate_billing(db_session, term2)

    after = [(r.id, r.credit_applied, r.credit_consumed, r.outstanding_balance) for r in await seed.records(s)]
    assert sorted(after) == sorted(before)
    assert len(await seed.transfers(s)) == 1


@pytest.mark.asyncio
async def test_reversal_reclaims_credit_from_later_terms(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM206", [class_c])
    term1 = await seed.fee_structure("T1", 10000, [class_c], term="Term 1")
    term2 = await seed.fee_structure("T2", 10000, [class_c], term="Term 2")
    term3 = await seed.fee_structure("T3", 10000, [class_c], term="Term 3")
    record1 = (await generate_billing(db_session, term1)).created[0]
    record2 = (await generate_billing(db_session, term2)).created[0]
    record3 = (await generate_billing(db_session, term3)).created[0]

    await _pay(db_session, record1, 10000)
    overpay = await _pay(db_session, record1, 15000)
    assert (await seed.record_by_id(record3)).credit_applied == Decimal("5000")

    await reverse_payment(db_session, overpay.payment.id, "Entered twice")

    r1 = await seed.record_by_id(record1)
    r2 = await seed.record_by_id(record2)
    r3 = await seed.record_by_id(record3)
    assert r1.status == "paid"
    assert r1.credit_generated == Decimal("0") and r1.credit_consumed == Decimal("0")
    assert r2.credit_applied == Decimal("0") and r2.outstanding_balance == Decimal("10000")
    assert r3.credit_applied == Decimal("0") and r3.status == "pending"
    assert await seed.transfers(s) == []
    await seed.assert_ledger_consistent(s)


@pytest.mark.asyncio
async def test_partial_reclaim_takes_from_furthest_target_first(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM207", [class_c])
    term1 = await seed.fee_structure("T1", 10000, [class_c], term="Term 1")
    term2 = await seed.fee_structure("T2", 10000, [class_c], term="Term 2")
    term3 = await seed.fee_structure("T3", 10000, [class_c], term="Term 3")
    record1 = (await generate_billing(db_session, term1)).created[0]
    record2 = (await generate_billing(db_session, term2)).created[0]
    record3 = (await generate_billing(db_session, term3)).created[0]

    await _pay(db_session, record1, 10000)
    await _pay(db_session, record1, 10000)
    small = await _pay(db_session, record1, 5000)

    await reverse_payment(db_session, small.payment.id, "Bounced")

    assert (await seed.record_by_id(record2)).credit_applied == Decimal("10000")
    assert (await seed.record_by_id(record3)).credit_applied == Decimal("0")
    await seed.assert_ledger_consistent(s)


@pytest.mark.asyncio
async def test_raised_bill_on_source_reclaims_credit(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM208", [class_c])
    term1 = await seed.fee_structure("T1", 10000, [class_c], term="Term 1")
    term2 = await seed.fee_structure("T2", 10000, [class_c], term="Term 2")
    record1 = (await generate_billing(db_session, term1)).created[0]
    record2 = (await generate_billing(db_session, term2)).created[0]
    await _pay(db_session, record1, 14000)
    assert (await seed.record_by_id(record2)).credit_applied == Decimal("4000")

    await update_fee_structure(db_session, term1, FeeStructureUpdate(amount=Decimal("12000")))

    r1 = await seed.record_by_id(record1)
    r2 = await seed.record_by_id(record2)
    assert r1.credit_generated == Decimal("2000") and r1.credit_consumed == Decimal("2000")
    assert r2.credit_applied == Decimal("2000") and r2.outstanding_balance == Decimal("8000")
    await seed.assert_ledger_consistent(s)


@pytest.mark.asyncio
async def test_no_future_record_keeps_credit(db_session, seed) -> None:
    class_c = await seed.school_class()
    s = await seed.student("ADM209", [class_c])
    term3 = await seed.fee_structure("T3", 10000, [class_c], term="Term 3")
    record3 = (await generate_billing(db_session, term3)).created[0]
    term1 = await seed.fee_structure("T1", 10000, [class_c], term="Term 1")
    record1 = (await generate_billing(db_session, term1)).created[0]

    await _pay(db_session, record3, 12000)

    assert (await seed.record_by_id(record1)).credit_applied == Decimal("0")
    r3 = await seed.record_by_id(record3)
    assert r3.credit_generated == Decimal("2000") and r3.credit_consumed == Decimal("0")
    assert await seed.transfers(s) == []
