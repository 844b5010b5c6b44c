"""
Tests for the admin settlement API.
"""

from decimal import Decimal

from app.models.fee_policy import FeePolicy
from app.models.payment_workflow import WorkflowStage, WorkflowStatus
from app.models.unsettled_finance import ConflictType
from app.services.unsettled_finance_service import UnsettledFinanceService

BASE = "/api/v1/admin/settlement"


class TestFeePolicyRoutes:
    def test_default_policy_when_none_is_stored(self, client):
        response = client.get(f"{BASE}/fee-policy")

        assert response.status_code == 200
        body = response.json()
        assert body["is_default"] is True
        assert body["id"] is None
        assert Decimal(body["fee_percentage"]) == Decimal("2")
        assert Decimal(body["minimum_fee"]) == Decimal("0.50")
        assert body["teacher_payout_wait_hours"] == 24

    def test_create_policy_records_admin(self, client, db):
        response = client.post(
            f"{BASE}/fee-policy",
            json={"fee_percentage": "10.00", "minimum_fee": "1.00"},
            headers={"X-Admin-Id": "admin-1"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["is_default"] is False
        assert Decimal(body["fee_percentage"]) == Decimal("10.00")
        policy = db.get(FeePolicy, body["id"])
        assert policy.updated_by == "admin-1"
        assert policy.is_active is True

        current = client.get(f"{BASE}/fee-policy").json()
        assert current["id"] == body["id"]

    def test_preview_uses_active_policy(self, client):
        response = client.post(f"{BASE}/fee-policy/preview", json={"gross_amount": "100.00"})

        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["transaction_fee"]) == Decimal("2.00")
        assert Decimal(body["net_amount"]) == Decimal("98.00")

    def test_unknown_field_is_a_validation_problem(self, client):
        response = client.post(f"{BASE}/fee-policy/preview", json={"gross": "100.00"})

        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "validation_error"
        assert body["instance"] == f"{BASE}/fee-policy/preview"
        assert body["errors"]


class TestLedgerRoutes:
    def test_unknown_transaction_is_404_problem(self, client):
        response = client.get(f"{BASE}/transactions/missing")

        assert response.status_code == 404
        body = response.json()
        assert body["code"] == "TRANSACTION_NOT_FOUND"
        assert body["title"] == "Not Found"
        assert body["detail"] == "Transaction missing not found"

    def test_transaction_lookups(self, client, make_payment):
        transaction, _ = make_payment("100.00", booking_id="bk-1")

        single = client.get(f"{BASE}/transactions/{transaction.id}")
        by_student = client.get(f"{BASE}/users/student-1/transactions")
        by_booking = client.get(f"{BASE}/bookings/bk-1/transactions")

        assert single.status_code == 200
        assert single.json()["status"] == "completed"
        assert Decimal(single.json()["net_amount"]) == Decimal("98.00")
        assert [row["id"] for row in by_student.json()] == [transaction.id]
        assert [row["id"] for row in by_booking.json()] == [transaction.id]
        assert client.get(f"{BASE}/users/nobody/transactions").json() == []

    def test_no_refunds_due(self, client):
        response = client.get(f"{BASE}/refunds/due")

        assert response.status_code == 200
        assert response.json() == []


class TestWorkflowRoutes:
    def test_list_and_override(self, client, make_payment):
        _, workflow = make_payment()

        listed = client.get(f"{BASE}/workflows", params={"limit": 10})
        assert [row["id"] for row in listed.json()] == [workflow.id]

        response = client.patch(
            f"{BASE}/workflows/{workflow.id}/stage",
            json={"stage": "completed", "reason": "settled offline"},
            headers={"X-Admin-Id": "admin-1"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["current_stage"] == WorkflowStage.COMPLETED.value
        assert body["status"] == WorkflowStatus.COMPLETED.value
        assert body["next_action_at"] is None

    def test_unknown_stage_is_rejected(self, client, make_payment):
        _, workflow = make_payment()

        response = client.patch(f"{BASE}/workflows/{workflow.id}/stage", json={"stage": "paid"})

        assert response.status_code == 422

    def test_manual_sweep_and_payout_run(self, client, make_payment, payout_method):
        # The fixture payment and its payout delay both lie in the past
        payout_method("teacher-1")
        make_payment()

        sweep = client.post(f"{BASE}/workflows/sweep")
        payouts = client.post(f"{BASE}/payouts/run")

        assert sweep.status_code == 200
        assert sweep.json()["examined"] == 1
        assert sweep.json()["advanced"] == 1
        assert payouts.status_code == 200
        assert payouts.json() == {"processed": 1, "skipped": 0, "failed": 0}


class TestUnsettledRoutes:
    def test_resolve_once(self, client, db):
        record = UnsettledFinanceService(db).record(
            "pay_x", ConflictType.DOUBLE_PAYMENT, "25.00", "Charged twice"
        )
        db.commit()

        listed = client.get(f"{BASE}/unsettled", params={"status": "open"})
        assert [row["id"] for row in listed.json()] == [record.id]

        payload = {"resolution_action": "manual_refund", "resolution_amount": "25.00"}
        first = client.post(
            f"{BASE}/unsettled/{record.id}/resolve",
            json=payload,
            headers={"X-Admin-Id": "admin-1"},
        )
        second = client.post(f"{BASE}/unsettled/{record.id}/resolve", json=payload)

        assert first.status_code == 200
        assert first.json()["status"] == "resolved"
        assert first.json()["resolved_by"] == "admin-1"
        assert second.status_code == 409
        assert second.json()["code"] == "ALREADY_RESOLVED"
        assert client.get(f"{BASE}/unsettled", params={"status": "open"}).json() == []


def test_summary(client, make_payment):
    make_payment("100.00")

    response = client.get(f"{BASE}/summary")

    assert response.status_code == 200
    body = response.json()
    assert Decimal(body["total_platform_revenue"]) == Decimal("100")
    assert Decimal(body["total_fees_collected"]) == Decimal("2")
    assert body["distinct_students"] == 1
    assert body["distinct_teachers"] == 0


def test_health_and_metrics(client):
    health = client.get("/health")
    metrics = client.get("/metrics/prometheus")

    assert health.status_code == 200
    assert health.json()["status"] == "ok"
    assert metrics.status_code == 200
    assert "tutorbridge_service_operations_total" in metrics.text
