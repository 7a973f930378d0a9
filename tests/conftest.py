import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./fee_ledger_test.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key"
os.environ.pop("BANK_WEBHOOK_SECRET", None)

from decimal import Decimal
from typing import AsyncGenerator, Dict, Iterable, List, Optional
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import app.core.models  # noqa: F401
from app.auth.security import create_access_token
from app.core.config import settings
from app.core.models import (
    CreditTransfer,
    Enrollment,
    FeeStructure,
    FeeStructureClass,
    LedgerRecord,
    Payment,
    SchoolClass,
    Student,
    UnmatchedPayment,
)
from app.db.session import Base, build_engine, get_db
from app.main import app


@pytest.fixture()
async def engine(tmp_path):
    """Fresh SQLite file database per test. A file (not :memory:) so concurrent sessions share it."""
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}", connect_args={"timeout": 30})
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture()
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app. Each request gets its own session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture()
def admin_id() -> UUID:
    return uuid4()


@pytest.fixture()
def admin_headers(admin_id) -> Dict[str, str]:
    token = create_access_token(subject={"sub": str(admin_id), "role": "ADMIN"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def fast_retry(monkeypatch):
    monkeypatch.setattr(settings, "transient_retry_backoff_seconds", 0)


class LedgerSeeder:
    """Writes directory data (classes, students, fee structures) and reads ledger state back."""

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self.session_factory = session_factory

    async def school_class(self, name: str = "Grade 6") -> UUID:
        async with self.session_factory() as db:
            cls = SchoolClass(name=name)
            db.add(cls)
            await db.commit()
            return cls.id

    async def student(
        self,
        registration_number: str,
        class_ids: Iterable[UUID] = (),
        student_type: str = "DayScholar",
        enrollment_status: str = "ACTIVE",
    ) -> UUID:
        async with self.session_factory() as db:
            st = Student(
                registration_number=registration_number,
                first_name="Amani",
                last_name=registration_number,
                student_type=student_type,
            )
            db.add(st)
            await db.flush()
            for cid in class_ids:
                db.add(Enrollment(student_id=st.id, class_id=cid, status=enrollment_status))
            await db.commit()
            return st.id

    async def fee_structure(
        self,
        name: str,
        amount,
        class_ids: Iterable[UUID],
        term: str = "Term 1",
        academic_year: str = "2024-2025",
        student_type: str = "DayScholar",
        category: str = "Mandatory",
        is_active: bool = True,
    ) -> UUID:
        async with self.session_factory() as db:
            fs = FeeStructure(
                name=name,
                term=term,
                academic_year=academic_year,
                category=category,
                student_type=student_type,
                amount=Decimal(str(amount)),
                is_active=is_active,
            )
            db.add(fs)
            await db.flush()
            for cid in class_ids:
                db.add(FeeStructureClass(fee_structure_id=fs.id, class_id=cid))
            await db.commit()
            return fs.id

    async def record(self, student_id: UUID, fee_structure_id: UUID) -> Optional[LedgerRecord]:
        async with self.session_factory() as db:
            return (
                await db.execute(
                    select(LedgerRecord).where(
                        LedgerRecord.student_id == student_id,
                        LedgerRecord.fee_structure_id == fee_structure_id,
                    )
                )
            ).scalar_one_or_none()

    async def record_by_id(self, ledger_record_id: UUID) -> Optional[LedgerRecord]:
        async with self.session_factory() as db:
            return await db.get(LedgerRecord, ledger_record_id)

    async def records(self, student_id: Optional[UUID] = None) -> List[LedgerRecord]:
        async with self.session_factory() as db:
            stmt = select(LedgerRecord)
            if student_id is not None:
                stmt = stmt.where(LedgerRecord.student_id == student_id)
            return list((await db.execute(stmt)).scalars().all())

    async def payments(self, **filters) -> List[Payment]:
        async with self.session_factory() as db:
            stmt = select(Payment)
            for key, value in filters.items():
                stmt = stmt.where(getattr(Payment, key) == value)
            return list((await db.execute(stmt)).scalars().all())

    async def transfers(self, student_id: UUID) -> List[CreditTransfer]:
        async with self.session_factory() as db:
            return list(
                (
                    await db.execute(select(CreditTransfer).where(CreditTransfer.student_id == student_id))
                ).scalars().all()
            )

    async def unmatched(self) -> List[UnmatchedPayment]:
        async with self.session_factory() as db:
            return list((await db.execute(select(UnmatchedPayment))).scalars().all())

    async def assert_ledger_consistent(self, student_id: UUID) -> None:
        """Sum invariant, non-negativity and credit conservation for one student."""
        records = await self.records(student_id)
        transfers = await self.transfers(student_id)
        for rec in records:
            paid = sum(
                (p.amount_paid for p in await self.payments(ledger_record_id=rec.id) if p.status == "completed"),
                Decimal("0"),
            )
            assert rec.total_paid == paid
            assert rec.outstanding_balance >= 0
            assert rec.credit_generated >= 0
            assert rec.credit_consumed <= rec.credit_generated
            consumed = sum((t.amount for t in transfers if t.source_record_id == rec.id), Decimal("0"))
            applied = sum((t.amount for t in transfers if t.target_record_id == rec.id), Decimal("0"))
            assert consumed == rec.credit_consumed
            assert applied == rec.credit_applied


@pytest.fixture()
def seed(session_factory) -> LedgerSeeder:
    return LedgerSeeder(session_factory)
