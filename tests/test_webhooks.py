"""Tests for the Stripe webhook."""

from decimal import Decimal
from unittest.mock import patch

import pytest
import stripe
from httpx import AsyncClient

from app.models.discount import DiscountCode, DiscountCodeUsage, DiscountType
from app.models.enrollment import Enrollment
from app.services.discount_service import DiscountOutcome
from app.services.enrollment_service import build_checkout_metadata
from app.services.stripe_service import StripeService


def checkout_event(metadata: dict, payment_status: str = "paid", session_id: str = "cs_test_hook"):
    return {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_status": payment_status,
                "amount_total": 10000,
                "metadata": metadata,
            }
        },
    }


async def post_event(client: AsyncClient, event: dict):
    with patch.object(StripeService, "construct_event", return_value=event):
        return await client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"Stripe-Signature": "t=1,v1=test"},
        )


@pytest.fixture
async def paid_group(create_program, create_cohort):
    program = await create_program(name="Paid Group", price_cents=10000)
    cohort = await create_cohort(program)
    return program, cohort


class TestCheckoutCompleted:
    """Tests for checkout.session.completed."""

    async def test_creates_enrollment_once(self, client: AsyncClient, db_session, test_user, paid_group):
        program, cohort = paid_group
        event = checkout_event(
            build_checkout_metadata(test_user.id, program, cohort, 10000, None, True)
        )

        first = await post_event(client, event)
        second = await post_event(client, event)

        assert first.status_code == 200
        assert first.json()["status"] == "processed"
        assert second.json()["status"] == "already_processed"
        assert second.json()["enrollment_id"] == first.json()["enrollment_id"]

        enrollments = await Enrollment.get_by_user_id(db_session, test_user.id)
        assert len(enrollments) == 1
        assert enrollments[0].stripe_checkout_session_id == "cs_test_hook"
        assert enrollments[0].amount_paid == 10000
        assert enrollments[0].squad_id is not None

    async def test_records_discount_usage(
        self, client: AsyncClient, db_session, organization, test_user, paid_group
    ):
        program, cohort = paid_group
        discount = DiscountCode(
            organization_id=organization.id,
            code="SAVE20",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("20"),
        )
        db_session.add(discount)
        await db_session.commit()
        outcome = DiscountOutcome.applied(
            code="SAVE20",
            original_amount=10000,
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("20"),
            discount_code_id=discount.id,
        )
        event = checkout_event(
            build_checkout_metadata(test_user.id, program, cohort, 10000, outcome, True)
        )

        response = await post_event(client, event)
        await post_event(client, event)

        assert response.json()["status"] == "processed"
        await db_session.refresh(discount)
        usages = await DiscountCodeUsage.get_for_code(db_session, discount.id)
        assert discount.use_count == 1
        assert len(usages) == 1
        assert usages[0].discount_amount == 2000
        assert usages[0].final_amount == 8000

        enrollment = await Enrollment.get_by_id(db_session, response.json()["enrollment_id"])
        assert enrollment.discount_code_id == discount.id
        assert enrollment.discount_amount == 2000

    async def test_ignores_other_checkout_types(self, client: AsyncClient):
        response = await post_event(client, checkout_event({"type": "merchandise"}))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"

    async def test_ignores_unpaid_sessions(self, client: AsyncClient, db_session, test_user, paid_group):
        program, cohort = paid_group
        event = checkout_event(
            build_checkout_metadata(test_user.id, program, cohort, 10000, None, True),
            payment_status="unpaid",
        )

        response = await post_event(client, event)

        assert response.json()["status"] == "ignored"
        assert await Enrollment.get_by_user_id(db_session, test_user.id) == []

    async def test_acknowledges_unrecoverable_failures(self, client: AsyncClient, test_user, paid_group):
        program, cohort = paid_group
        metadata = build_checkout_metadata(test_user.id, program, cohort, 10000, None, True)
        metadata["program_id"] = "deleted-program"

        response = await post_event(client, checkout_event(metadata))

        assert response.status_code == 200
        assert response.json() == {"status": "ignored", "reason": "PROGRAM_NOT_FOUND"}


class TestWebhookVerification:
    """Tests for webhook signature handling."""

    async def test_invalid_signature(self, client: AsyncClient):
        with patch.object(
            StripeService,
            "construct_event",
            side_effect=stripe.SignatureVerificationError("bad signature", "t=1,v1=bad"),
        ):
            response = await client.post(
                "/api/v1/webhooks/stripe",
                content=b"{}",
                headers={"Stripe-Signature": "t=1,v1=bad"},
            )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid signature"}

    async def test_unhandled_event_type(self, client: AsyncClient):
        response = await post_event(client, {"type": "invoice.paid", "data": {"object": {}}})

        assert response.status_code == 200
        assert response.json() == {"status": "ignored"}
