"""Contract tests for the treasury HTTP API."""

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from treasury.main import app
from treasury.services import get_async_session


@pytest.fixture
async def client(session_factory):
    """API client bound to the per-test database."""

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def base(association):
    return f"/api/associations/{association.id}"


def as_user(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


def error_code(response) -> str:
    return response.json()["detail"]["error"]["code"]


async def create(client, base, user_id, **overrides):
    payload = {"expense_type": "aide_membre", "title": "Aide obsèques", "amount_requested": "600"}
    payload.update(overrides)
    return await client.post(f"{base}/expense-requests", json=payload, headers=as_user(user_id))


async def decide(client, base, request_id, user_id, decision="approved", **extra):
    return await client.post(
        f"{base}/expense-requests/{request_id}/decisions",
        json={"decision": decision, **extra},
        headers=as_user(user_id),
    )


class TestExpenseRequestEndpoints:
    """Test contract for the expense request workflow endpoints."""

    @pytest.mark.asyncio
    async def test_full_flow(self, client, base, users, add_income):
        await add_income(1000)

        response = await create(client, base, users.member)
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["required_validators"] == ["president", "tresorier"]
        assert Decimal(body["amount_requested"]) == Decimal("600")
        request_id = body["id"]

        response = await decide(client, base, request_id, users.president)
        assert response.status_code == 200
        assert response.json()["status"] == "under_review"

        response = await client.get(f"{base}/expense-requests/{request_id}/progress")
        assert response.json() == {"completed": 1, "total": 2, "percentage": 50, "missing_roles": ["tresorier"]}

        response = await decide(client, base, request_id, users.tresorier)
        body = response.json()
        assert body["status"] == "approved"
        assert [r["role"] for r in body["validation_records"]] == ["president", "tresorier"]

        response = await client.post(
            f"{base}/expense-requests/{request_id}/payment",
            json={"payment_method": "bank_transfer", "manual_payment_reference": "VIR-2026-001"},
            headers=as_user(users.tresorier),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "paid"
        assert body["transaction_id"] is not None

        response = await client.get(f"{base}/balance")
        assert Decimal(response.json()["available_balance"]) == Decimal("400")

        response = await client.get(f"{base}/reconciliation")
        assert response.json() == []

        history = (await client.get(f"{base}/expense-requests/{request_id}/history")).json()
        assert [row["action"] for row in history] == ["created", "approved", "approved", "paid"]

    @pytest.mark.asyncio
    async def test_error_envelope(self, client, base, users, add_income):
        response = await create(client, base, users.member, amount_requested="0")
        assert response.status_code == 400
        assert error_code(response) == "validation_error"

        response = await create(client, base, users.member, expense_type="depense_operationnelle")
        assert response.status_code == 403
        assert error_code(response) == "authorization_error"

        response = await client.get(f"{base}/expense-requests/999")
        assert response.status_code == 404
        assert error_code(response) == "not_found"

        response = await create(client, base, users.member)
        request_id = response.json()["id"]
        response = await decide(client, base, request_id, users.president)
        assert response.status_code == 400
        error = response.json()["detail"]["error"]
        assert error["code"] == "insufficient_funds"
        assert Decimal(error["shortage"]) == Decimal("600")

    @pytest.mark.asyncio
    async def test_conflicts(self, client, base, users, add_income):
        await add_income(1000)
        request_id = (await create(client, base, users.member)).json()["id"]

        response = await decide(client, base, request_id, users.president, "rejected", comment="Hors statuts")
        assert response.json()["status"] == "rejected"

        response = await decide(client, base, request_id, users.tresorier)
        assert response.status_code == 409
        error = response.json()["detail"]["error"]
        assert error["code"] == "conflict"
        assert error["current_status"] == "rejected"

        request_id = (await create(client, base, users.member)).json()["id"]
        await decide(client, base, request_id, users.president)
        response = await decide(client, base, request_id, users.second_president)
        assert response.status_code == 409
        assert response.json()["detail"]["error"]["current_status"] == "under_review"

    @pytest.mark.asyncio
    async def test_role_not_required(self, client, base, users, add_income):
        await add_income(1000)
        request_id = (await create(client, base, users.member)).json()["id"]

        response = await decide(client, base, request_id, users.secretaire)
        assert response.status_code == 403
        assert response.json()["detail"]["error"]["required_roles"] == ["president", "tresorier"]

    @pytest.mark.asyncio
    async def test_missing_user_header(self, client, base):
        response = await client.post(
            f"{base}/expense-requests",
            json={"expense_type": "aide_membre", "title": "Aide", "amount_requested": "10"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_cancel_update_and_listing(self, client, base, users):
        request_id = (await create(client, base, users.member, amount_requested="50")).json()["id"]

        response = await client.patch(
            f"{base}/expense-requests/{request_id}",
            json={"title": "Aide pharmacie"},
            headers=as_user(users.member),
        )
        assert response.json()["title"] == "Aide pharmacie"

        response = await client.get(
            f"{base}/expense-requests/pending-validations", headers=as_user(users.tresorier)
        )
        assert [r["id"] for r in response.json()] == [request_id]

        response = await client.post(
            f"{base}/expense-requests/{request_id}/cancel",
            json={"reason": "Remboursé par la mutuelle"},
            headers=as_user(users.member),
        )
        assert response.json()["status"] == "cancelled"

        response = await client.get(f"{base}/expense-requests", params={"status": "cancelled"})
        assert [r["id"] for r in response.json()] == [request_id]

    @pytest.mark.asyncio
    async def test_payment_failure_and_retry(self, client, base, users, add_income, approved_request):
        await add_income(1000)
        request = await approved_request(100)
        url = f"{base}/expense-requests/{request.id}"

        response = await client.post(
            f"{url}/payment-failure", json={"reason": "IBAN invalide"}, headers=as_user(users.tresorier)
        )
        assert response.json()["status"] == "payment_failed"

        response = await client.post(f"{url}/payment-retry", headers=as_user(users.tresorier))
        assert response.json()["status"] == "approved"


class TestLoanEndpoints:
    @pytest.mark.asyncio
    async def test_repayments(self, client, base, users, add_income, paid_loan):
        await add_income(3000)
        loan = await paid_loan(1200)

        for _ in range(5):
            response = await client.post(
                f"{base}/loans/{loan.id}/repayments", json={"amount": "100"}, headers=as_user(users.tresorier)
            )
            assert response.status_code == 201

        body = (await client.get(f"{base}/loans/{loan.id}")).json()
        assert Decimal(body["outstanding"]) == Decimal("700")
        assert body["completion_percentage"] == 42
        assert body["repayment_status"] == "in_progress"
        assert Decimal(body["total_penalty"]) == Decimal("0")

        history = (await client.get(f"{base}/loans/{loan.id}/repayments")).json()
        assert len(history) == 5

    @pytest.mark.asyncio
    async def test_schedule_and_non_bureau(self, client, base, users, add_income, paid_loan):
        await add_income(3000)
        loan = await paid_loan(600, duration_months=6)

        response = await client.post(
            f"{base}/loans/{loan.id}/installments",
            json={"first_due_date": "2027-01-10"},
            headers=as_user(users.tresorier),
        )
        assert response.status_code == 201
        assert [row["due_date"] for row in response.json()][:2] == ["2027-01-10", "2027-02-10"]

        response = await client.post(
            f"{base}/loans/{loan.id}/repayments", json={"amount": "100"}, headers=as_user(users.member)
        )
        assert response.status_code == 403


class TestBalanceEndpoints:
    @pytest.mark.asyncio
    async def test_balance_and_funds_check(self, client, base, add_income):
        await add_income(500)

        body = (await client.get(f"{base}/balance")).json()
        assert Decimal(body["total_income"]) == Decimal("500")

        body = (await client.get(f"{base}/balance/check", params={"amount": "700"})).json()
        assert body["sufficient"] is False
        assert Decimal(body["shortage"]) == Decimal("200")

    @pytest.mark.asyncio
    async def test_summary_history_and_alerts(self, client, base, add_income):
        await add_income(100)

        body = (await client.get(f"{base}/financial-summary", params={"period": "month"})).json()
        assert body["period"] == "month"
        assert Decimal(body["projected_balance"]) == Decimal("100")

        response = await client.get(f"{base}/financial-summary", params={"period": "decade"})
        assert response.status_code == 400

        history = (await client.get(f"{base}/balance/history", params={"months": 3})).json()
        assert len(history) == 3

        alerts = (await client.get(f"{base}/alerts")).json()
        assert [a["type"] for a in alerts] == ["low_balance"]
        assert alerts[0]["severity"] == "warning"

    @pytest.mark.asyncio
    async def test_unknown_association(self, client):
        response = await client.get("/api/associations/404/balance")
        assert response.status_code == 404
        assert error_code(response) == "not_found"

    @pytest.mark.asyncio
    async def test_health(self, client):
        assert (await client.get("/health")).json() == {"status": "ok", "database": "ok"}

    @pytest.mark.asyncio
    async def test_expense_statistics_and_summary(self, client, base, users, add_income, approved_request, paid_loan):
        await add_income(3000)
        request = await approved_request(100)
        await client.post(
            f"{base}/expense-requests/{request.id}/payment",
            json={"payment_method": "cash"},
            headers=as_user(users.tresorier),
        )
        await paid_loan(600)

        body = (await client.get(f"{base}/expense-statistics")).json()
        assert [(t["type"], t["count"]) for t in body["by_type"]] == [("aide_membre", 1), ("pret_partenariat", 1)]
        assert Decimal(body["by_type"][1]["average"]) == Decimal("600")
        assert body["by_status"]["paid"] == 2

        params = {"period": "quarter", "include_loans": "false"}
        body = (await client.get(f"{base}/expense-statistics", params=params)).json()
        assert [t["type"] for t in body["by_type"]] == ["aide_membre"]
        assert body["include_loans"] is False

        response = await client.get(f"{base}/expense-statistics", params={"period": "week"})
        assert response.status_code == 400

        body = (await client.get(f"{base}/expense-summary")).json()
        assert (body["pending"], body["approved"], body["paid"]) == (0, 0, 2)
        assert Decimal(body["total_paid"]) == Decimal("700")
