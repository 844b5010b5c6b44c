from decimal import Decimal

import pytest

from app.core.exceptions import AlreadyResolvedException, NotFoundException
from app.models.unsettled_finance import ConflictType, UnsettledPriority, UnsettledStatus
from app.services.unsettled_finance_service import UnsettledFinanceService


def _record(service, reference="pay_1", amount="100.00", **kwargs):
    return service.record(
        reference,
        kwargs.pop("conflict_type", ConflictType.FAILED_ENROLLMENT),
        amount,
        "Enrollment could not be created",
        **kwargs,
    )


def test_record_opens_with_medium_priority_by_default(db):
    service = UnsettledFinanceService(db)

    record = _record(service)

    assert record.status == UnsettledStatus.OPEN
    assert record.priority == UnsettledPriority.MEDIUM
    assert record.conflict_amount == Decimal("100.00")
    assert record.resolution_date is None


def test_resolve_closes_record_once(db, now):
    service = UnsettledFinanceService(db)
    record = _record(service)

    resolved = service.resolve(
        record.id, "manual_refund", "100.00", "Refunded via dashboard", "admin-1", now=now
    )

    assert resolved.status == UnsettledStatus.RESOLVED
    assert resolved.resolution_action == "manual_refund"
    assert resolved.resolution_amount == Decimal("100.00")
    assert resolved.resolved_by == "admin-1"
    assert resolved.resolution_date == now

    with pytest.raises(AlreadyResolvedException) as exc_info:
        service.resolve(record.id, "manual_refund", "50.00")
    assert exc_info.value.details["resolution_amount"] == "100.00"
    assert service.get(record.id).resolution_amount == Decimal("100.00")


def test_resolve_unknown_record(db):
    with pytest.raises(NotFoundException):
        UnsettledFinanceService(db).resolve("missing", "noop", 0)


def test_open_amount_and_status_filter(db):
    service = UnsettledFinanceService(db)
    first = _record(service, "pay_1", "100.00")
    _record(service, "pay_2", "40.50", conflict_type=ConflictType.DISPUTED_REFUND)
    service.resolve(first.id, "written_off", "0.00")

    assert service.open_amount() == Decimal("40.50")
    open_records = service.list_by_status(UnsettledStatus.OPEN)
    assert [r.gateway_reference for r in open_records] == ["pay_2"]
    assert len(service.list_by_status()) == 2


def test_has_open_tracks_type_and_transaction(db):
    service = UnsettledFinanceService(db)
    _record(service, transaction_id="tx-1", conflict_type=ConflictType.FAILED_TRANSFER)

    assert service.has_open("tx-1", ConflictType.FAILED_TRANSFER)
    assert not service.has_open("tx-1", ConflictType.DISPUTED_REFUND)
    assert not service.has_open("tx-2", ConflictType.FAILED_TRANSFER)
