"""
Tests for payments and the staff verification workflow.

These tests verify:
  - Customers create pending payments; amounts are stored as exact cents
  - Every invalid payment field is reported at once
  - Customers only ever see their own payments
  - Staff list pending payments together with the owner's details
  - pending -> verified -> pending and verified -> submitted transitions
  - Transitions from the wrong status answer 409 and change nothing
  - Batch submission only counts transactions that were verified
  - Concurrent verification of one transaction succeeds exactly once
"""

import asyncio
import uuid

from sqlalchemy import select

from conftest import PAYMENT
from portal.models.audit_event import AuditEvent


async def _create(customer_client, **overrides) -> dict:
    response = await customer_client.post("/payments", json={**PAYMENT, **overrides})
    assert response.status_code == 201, response.text
    return response.json()["payment"]


class TestCreatePayment:
    """Tests for POST /payments."""

    async def test_create_payment(self, customer_client):
        response = await customer_client.post(
            "/payments", json={**PAYMENT, "swiftCode": "absazajj"}
        )
        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Payment created successfully"

        payment = body["payment"]
        assert body["transactionId"] == payment["id"]
        assert payment["amountCents"] == 15075
        assert payment["amount"] == "150.75"
        assert payment["currency"] == "USD"
        assert payment["swiftCode"] == "ABSAZAJJ"
        assert payment["status"] == "pending"
        assert payment["verified"] is False
        assert payment["verifiedBy"] is None
        assert payment["userId"] == customer_client.user_id
        assert payment["description"] == "Payment to Acme Trading"

    async def test_amount_as_number(self, customer_client):
        payment = await _create(customer_client, amount=10.5)
        assert payment["amountCents"] == 1050
        assert payment["amount"] == "10.50"

    async def test_explicit_description_kept(self, customer_client):
        payment = await _create(customer_client, description="Invoice 2024-17")
        assert payment["description"] == "Invoice 2024-17"

    async def test_every_invalid_field_reported(self, customer_client):
        response = await customer_client.post(
            "/payments",
            json={
                **PAYMENT,
                "currency": "usd",
                "recipientName": "A",
                "recipientAccount": "12ab",
                "swiftCode": "BAD",
            },
        )
        assert response.status_code == 400
        errors = response.json()["errors"]
        assert "Currency must be a 3-letter uppercase code" in errors
        assert "Recipient name must be 2-100 characters" in errors
        assert "Recipient account must be 8-12 digits" in errors
        assert "Invalid SWIFT code format. Example: ABSAZAJJ or ABSAZAJJXXX" in errors

    async def test_eleven_character_swift_accepted(self, customer_client):
        payment = await _create(customer_client, swiftCode="ABSAZAJJXXX")
        assert payment["swiftCode"] == "ABSAZAJJXXX"

    async def test_three_decimal_places_rejected(self, customer_client):
        response = await customer_client.post("/payments", json={**PAYMENT, "amount": "10.005"})
        assert response.status_code == 400

    async def test_zero_amount_rejected(self, customer_client):
        response = await customer_client.post("/payments", json={**PAYMENT, "amount": 0})
        assert response.status_code == 400

    async def test_negative_amount_rejected(self, customer_client):
        response = await customer_client.post("/payments", json={**PAYMENT, "amount": "-5.00"})
        assert response.status_code == 400

    async def test_amount_above_maximum_rejected(self, customer_client):
        response = await customer_client.post(
            "/payments", json={**PAYMENT, "amount": "1000000.01"}
        )
        assert response.status_code == 400

    async def test_maximum_amount_accepted(self, customer_client):
        payment = await _create(customer_client, amount="1000000")
        assert payment["amountCents"] == 100_000_000

    async def test_missing_fields(self, customer_client):
        response = await customer_client.post("/payments", json={"amount": "10.00"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "validation_error"

    async def test_owner_comes_from_token(self, customer_client, second_customer_client):
        """A userId in the body is ignored."""
        payment = await _create(customer_client, userId=second_customer_client.user_id)
        assert payment["userId"] == customer_client.user_id

    async def test_creation_audited(self, customer_client, db_session):
        await _create(customer_client)
        types = (await db_session.execute(select(AuditEvent.event_type))).scalars().all()
        assert "PAYMENT_CREATED" in types


class TestListPayments:
    """Tests for GET /payments."""

    async def test_newest_first(self, customer_client):
        first = await _create(customer_client, amount="1.00")
        second = await _create(customer_client, amount="2.00")

        response = await customer_client.get("/payments")
        assert response.status_code == 200
        ids = [p["id"] for p in response.json()["payments"]]
        assert ids == [second["id"], first["id"]]

    async def test_customers_only_see_their_own(self, customer_client, second_customer_client):
        mine = await _create(customer_client)
        theirs = await _create(second_customer_client, recipientName="Other Party")

        my_ids = [p["id"] for p in (await customer_client.get("/payments")).json()["payments"]]
        their_ids = [
            p["id"] for p in (await second_customer_client.get("/payments")).json()["payments"]
        ]
        assert my_ids == [mine["id"]]
        assert their_ids == [theirs["id"]]


class TestVerification:
    """Tests for the staff endpoints under /transactions."""

    async def test_pending_list_includes_owner(self, customer_client, employee_client):
        payment = await _create(customer_client)

        response = await employee_client.get("/transactions/pending")
        assert response.status_code == 200
        [txn] = response.json()["transactions"]
        assert txn["id"] == payment["id"]
        assert txn["owner"] == {"fullName": "Jane Doe", "accountNumber": "12345678"}

    async def test_verify(self, customer_client, employee_client):
        payment = await _create(customer_client)

        response = await employee_client.patch(f"/transactions/{payment['id']}/verify")
        assert response.status_code == 200
        txn = response.json()["transaction"]
        assert txn["status"] == "verified"
        assert txn["verified"] is True
        assert txn["verifiedBy"] == employee_client.user_id
        assert txn["verifiedAt"] is not None

        pending = (await employee_client.get("/transactions/pending")).json()["transactions"]
        assert pending == []
        verified = (await employee_client.get("/transactions/verified")).json()["transactions"]
        assert [t["id"] for t in verified] == [payment["id"]]

        # The customer sees the new status
        mine = (await customer_client.get("/payments")).json()["payments"]
        assert mine[0]["status"] == "verified"

    async def test_verify_twice_conflicts(self, customer_client, employee_client):
        payment = await _create(customer_client)
        await employee_client.patch(f"/transactions/{payment['id']}/verify")

        response = await employee_client.patch(f"/transactions/{payment['id']}/verify")
        assert response.status_code == 409
        assert response.json()["current_status"] == "verified"

    async def test_unverify(self, customer_client, employee_client):
        payment = await _create(customer_client)
        await employee_client.patch(f"/transactions/{payment['id']}/verify")

        response = await employee_client.patch(f"/transactions/{payment['id']}/unverify")
        assert response.status_code == 200
        txn = response.json()["transaction"]
        assert txn["status"] == "pending"
        assert txn["verified"] is False
        assert txn["verifiedBy"] is None
        assert txn["verifiedAt"] is None

    async def test_unverify_pending_conflicts(self, customer_client, employee_client):
        payment = await _create(customer_client)
        response = await employee_client.patch(f"/transactions/{payment['id']}/unverify")
        assert response.status_code == 409
        assert response.json()["current_status"] == "pending"

    async def test_unknown_transaction(self, employee_client):
        response = await employee_client.patch(f"/transactions/{uuid.uuid4()}/verify")
        assert response.status_code == 404

    async def test_admin_can_verify(self, customer_client, admin_client):
        payment = await _create(customer_client)
        response = await admin_client.patch(f"/transactions/{payment['id']}/verify")
        assert response.status_code == 200

    async def test_customer_cannot_verify(self, customer_client):
        payment = await _create(customer_client)
        response = await customer_client.patch(f"/transactions/{payment['id']}/verify")
        assert response.status_code == 403

    async def test_transitions_audited(self, customer_client, employee_client, db_session):
        payment = await _create(customer_client)
        await employee_client.patch(f"/transactions/{payment['id']}/verify")
        await employee_client.patch(f"/transactions/{payment['id']}/unverify")

        types = (await db_session.execute(select(AuditEvent.event_type))).scalars().all()
        assert "TRANSACTION_VERIFIED" in types
        assert "TRANSACTION_UNVERIFIED" in types


class TestSubmitToSwift:
    """Tests for POST /transactions/submit-to-swift."""

    async def test_only_verified_are_submitted(self, customer_client, employee_client):
        verified = await _create(customer_client, amount="1.00")
        pending = await _create(customer_client, amount="2.00")
        await employee_client.patch(f"/transactions/{verified['id']}/verify")

        response = await employee_client.post(
            "/transactions/submit-to-swift",
            json={"transactionIds": [verified["id"], pending["id"], str(uuid.uuid4())]},
        )
        assert response.status_code == 200
        assert response.json()["submittedCount"] == 1

        statuses = {
            p["id"]: p["status"]
            for p in (await customer_client.get("/payments")).json()["payments"]
        }
        assert statuses == {verified["id"]: "submitted", pending["id"]: "pending"}

    async def test_submitted_cannot_be_verified_or_resubmitted(
        self, customer_client, employee_client
    ):
        payment = await _create(customer_client)
        await employee_client.patch(f"/transactions/{payment['id']}/verify")
        await employee_client.post(
            "/transactions/submit-to-swift", json={"transactionIds": [payment["id"]]}
        )

        assert (
            await employee_client.patch(f"/transactions/{payment['id']}/verify")
        ).status_code == 409
        assert (
            await employee_client.patch(f"/transactions/{payment['id']}/unverify")
        ).status_code == 409

        again = await employee_client.post(
            "/transactions/submit-to-swift", json={"transactionIds": [payment["id"]]}
        )
        assert again.json()["submittedCount"] == 0

    async def test_empty_batch_rejected(self, employee_client):
        response = await employee_client.post(
            "/transactions/submit-to-swift", json={"transactionIds": []}
        )
        assert response.status_code == 400

    async def test_submission_records_who(self, customer_client, employee_client):
        payment = await _create(customer_client)
        await employee_client.patch(f"/transactions/{payment['id']}/verify")
        await employee_client.post(
            "/transactions/submit-to-swift", json={"transactionIds": [payment["id"]]}
        )

        [txn] = (await customer_client.get("/payments")).json()["payments"]
        assert txn["submittedBy"] == employee_client.user_id
        assert txn["submittedToSwiftAt"] is not None
        assert txn["verified"] is True


class TestConcurrentVerification:
    """Two staff members acting on the same transaction at once.

    Note: SQLite serializes writes, so true parallelism isn't possible.
    These tests still exercise the conditional UPDATE that makes exactly
    one of the competing transitions win.
    """

    async def test_concurrent_verify_succeeds_once(
        self, customer_client, employee_client, admin_client
    ):
        payment = await _create(customer_client)

        results = await asyncio.gather(
            employee_client.patch(f"/transactions/{payment['id']}/verify"),
            admin_client.patch(f"/transactions/{payment['id']}/verify"),
        )

        assert sorted(r.status_code for r in results) == [200, 409]
