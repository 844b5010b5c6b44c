# backend/tests/conftest.py
"""
Pytest configuration for the settlement engine.

Every test gets a fresh in-memory SQLite database with the full schema.
External collaborators (marketplace booking directory, seat provisioner,
Redis) are replaced by the small fakes below.
"""

import os

# CRITICAL: Set testing mode BEFORE any app imports!
os.environ["is_testing"] = "true"
os.environ["CI"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["LEDGER_CACHE_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings

settings.is_testing = True

import app.models  # noqa: F401,E402  (registers every table on Base.metadata)
from app.database import Base, enable_sqlite_savepoints, get_db  # noqa: E402
from app.models.payment_method import PaymentMethod, PaymentMethodType  # noqa: E402
from app.models.payment_transaction import (  # noqa: E402
    PaymentTransaction,
    TransactionStage,
    TransactionStatus,
    TransactionType,
)
from app.models.payment_workflow import PaymentWorkflow, WorkflowType  # noqa: E402
from app.schemas.settlement import TransactionCreate  # noqa: E402
from app.services.collaborators import (  # noqa: E402
    BookingSnapshot,
    BookingState,
    CancelledEntity,
    EnrollmentSnapshot,
)
from app.services.fee_calculator import FeePolicySnapshot, compute_fee  # noqa: E402
from app.services.payment_workflow_service import PaymentWorkflowService  # noqa: E402
from app.services.transaction_ledger import TransactionLedgerService  # noqa: E402

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture(scope="function")
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    """Create a new database session for each test."""
    TestSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=engine, expire_on_commit=False
    )
    session = TestSessionLocal()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def client(db: Session):
    """Create a test client bound to the test database."""
    from app.main import app

    def override_get_db():
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    test_client = TestClient(app)

    yield test_client

    app.dependency_overrides.clear()
    test_client.close()


@pytest.fixture
def default_policy() -> FeePolicySnapshot:
    return FeePolicySnapshot.from_settings(settings)


@pytest.fixture
def ledger(db: Session) -> TransactionLedgerService:
    return TransactionLedgerService(db)


@pytest.fixture
def workflow_service(db: Session, ledger: TransactionLedgerService) -> PaymentWorkflowService:
    return PaymentWorkflowService(db, ledger=ledger)


@pytest.fixture
def make_payment(
    db: Session,
    ledger: TransactionLedgerService,
    workflow_service: PaymentWorkflowService,
    default_policy: FeePolicySnapshot,
) -> Callable[..., Tuple[PaymentTransaction, PaymentWorkflow]]:
    """Record a captured booking payment with its workflow, committed."""

    counter = {"n": 0}

    def _make(
        amount: Any = "100.00",
        *,
        booking_id: Optional[str] = None,
        enrollment_id: Optional[str] = None,
        student_id: str = "student-1",
        teacher_id: str = "teacher-1",
        scheduled_at: Optional[datetime] = None,
        class_end: Optional[datetime] = None,
        transaction_type: TransactionType = TransactionType.BOOKING_PAYMENT,
    ) -> Tuple[PaymentTransaction, PaymentWorkflow]:
        counter["n"] += 1
        breakdown = compute_fee(amount, default_policy)
        scheduled_at = scheduled_at or NOW + timedelta(days=1)
        transaction = ledger.create_transaction(
            TransactionCreate(
                transaction_type=transaction_type,
                amount=breakdown.gross,
                transaction_fee=breakdown.fee,
                from_user_id=student_id,
                to_user_id=teacher_id,
                status=TransactionStatus.COMPLETED,
                workflow_stage=TransactionStage.STUDENT_TO_ADMIN,
                gateway_reference=f"pay_{counter['n']}",
                booking_id=booking_id,
                enrollment_id=enrollment_id,
                scheduled_at=scheduled_at,
                completed_at=NOW - timedelta(days=1),
            )
        )
        workflow_type = (
            WorkflowType.CLASS_BOOKING
            if transaction_type == TransactionType.BOOKING_PAYMENT
            else WorkflowType.COURSE_PURCHASE
        )
        workflow = workflow_service.create_workflow(
            transaction,
            workflow_type,
            class_end or scheduled_at + timedelta(hours=1),
            policy=default_policy,
        )
        db.commit()
        return transaction, workflow

    return _make


@pytest.fixture
def payout_method(db: Session) -> Callable[..., PaymentMethod]:
    def _make(user_id: str = "teacher-1", **overrides: Any) -> PaymentMethod:
        method = PaymentMethod(
            user_id=user_id,
            method_type=overrides.pop("method_type", PaymentMethodType.UPI),
            display_name=overrides.pop("display_name", "teacher@upi"),
            is_active=overrides.pop("is_active", True),
            is_default=overrides.pop("is_default", True),
        )
        db.add(method)
        db.commit()
        return method

    return _make


# ============================================================================
# Fakes for external collaborators
# ============================================================================


class FakeBookingDirectory:
    """In-memory stand-in for the marketplace's bookings and enrollments."""

    def __init__(self) -> None:
        self.bookings: Dict[str, BookingSnapshot] = {}
        self.enrollments: Dict[str, EnrollmentSnapshot] = {}
        self.cancelled: List[Tuple[str, CancelledEntity, str]] = []

    def add_booking(self, booking: BookingSnapshot) -> BookingSnapshot:
        self.bookings[booking.id] = booking
        return booking

    def add_enrollment(self, enrollment: EnrollmentSnapshot) -> EnrollmentSnapshot:
        self.enrollments[enrollment.id] = enrollment
        return enrollment

    def get_booking(self, booking_id: str) -> Optional[BookingSnapshot]:
        return self.bookings.get(booking_id)

    def get_enrollment(self, enrollment_id: str) -> Optional[EnrollmentSnapshot]:
        return self.enrollments.get(enrollment_id)

    def mark_cancelled(
        self,
        entity_id: str,
        *,
        kind: CancelledEntity,
        cancelled_by: str,
        reason: Optional[str] = None,
    ) -> None:
        self.cancelled.append((entity_id, kind, cancelled_by))
        if kind == CancelledEntity.BOOKING and entity_id in self.bookings:
            booking = self.bookings[entity_id]
            self.bookings[entity_id] = BookingSnapshot(
                id=booking.id,
                student_id=booking.student_id,
                teacher_id=booking.teacher_id,
                scheduled_at=booking.scheduled_at,
                status=BookingState.CANCELLED,
                course_id=booking.course_id,
            )


class FakeProvisioner:
    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        self.fail_with = fail_with
        self.calls: List[str] = []

    def provision(self, event: Any, transaction: PaymentTransaction) -> None:
        self.calls.append(transaction.id)
        if self.fail_with is not None:
            raise self.fail_with


class DummyRedis:
    """Dict-backed subset of the redis client used by the ledger cache."""

    def __init__(self, fail: bool = False) -> None:
        self.store: Dict[str, str] = {}
        self.fail = fail
        self.deleted: List[str] = []

    def _check(self) -> None:
        if self.fail:
            from redis.exceptions import ConnectionError as RedisConnectionError

            raise RedisConnectionError("redis unavailable")

    def get(self, key: str) -> Optional[str]:
        self._check()
        return self.store.get(key)

    def setex(self, key: str, ttl: int, value: str) -> bool:
        self._check()
        self.store[key] = value
        return True

    def delete(self, *keys: str) -> int:
        self._check()
        self.deleted.extend(keys)
        return sum(1 for key in keys if self.store.pop(key, None) is not None)


@pytest.fixture
def booking_directory() -> FakeBookingDirectory:
    return FakeBookingDirectory()


@pytest.fixture
def dummy_redis() -> DummyRedis:
    return DummyRedis()


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()
