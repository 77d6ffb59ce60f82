"""
Tests for Stripe event processing.
"""
import pytest

from app.db.models.credit_transaction import CreditTransaction
from app.db.models.stripe_event import StripeEvent
from app.db.models.subscription import Subscription
from app.db.models.user import User
from app.services.billing_events import (
    handle_subscription_deleted,
    handle_subscription_update,
    process_event,
)
from app.services.subscription_store import SubscriptionRecord, to_utc, upsert_subscription
from tests.stripe_fakes import make_event, make_subscription


def _stored(db, user):
    db.expire_all()
    return db.query(Subscription).filter(Subscription.user_id == user.id).first()


def _snapshot(sub):
    columns = [c.key for c in Subscription.__mapper__.column_attrs]
    return {key: getattr(sub, key) for key in columns}


def test_subscription_created_sets_tier_and_credits(db_session, gateway, test_user):
    process_event(db_session, gateway, make_event(
        "customer.subscription.created", make_subscription(price_id="price_power_annual"), created=100,
    ))

    sub = _stored(db_session, test_user)
    assert sub.tier == "power"
    assert sub.billing_interval == "annual"
    assert sub.status == "active"
    assert sub.stripe_subscription_id == "sub_1"
    assert sub.available_credits == 3000
    assert sub.total_credits == 3000
    assert sub.extra_metadata["messageCredits"] == 3000
    assert sub.last_event_at == 100
    assert sub.current_period_end is not None


def test_period_bounds_read_from_subscription_item(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(on_item=True, period_end=1_769_904_000))

    sub = _stored(db_session, test_user)
    assert int(to_utc(sub.current_period_end).timestamp()) == 1_769_904_000


def test_business_tier_marks_user_as_business(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(price_id="price_biz_starter_monthly"))

    db_session.refresh(test_user)
    assert test_user.user_type == "business"
    assert _stored(db_session, test_user).available_credits == 10000


def test_business_pro_is_unlimited(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(price_id="price_biz_pro_monthly"))

    sub = _stored(db_session, test_user)
    assert sub.available_credits is None
    assert sub.total_credits is None
    assert sub.extra_metadata["messageCredits"] == -1


def test_product_metadata_is_stored(db_session, gateway, test_user):
    gateway.product_metadata["price_pro_monthly"] = {"maxVectorDocs": "2500", "messageCredits": "800"}

    handle_subscription_update(db_session, gateway, make_subscription())

    sub = _stored(db_session, test_user)
    assert sub.extra_metadata["maxVectorDocs"] == "2500"
    assert sub.available_credits == 800


def test_update_in_same_period_keeps_balance(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(), event_created=100)
    sub = _stored(db_session, test_user)
    sub.available_credits = 123
    db_session.commit()

    updated = make_subscription()
    updated["cancel_at_period_end"] = True
    handle_subscription_update(db_session, gateway, updated, event_created=200)

    sub = _stored(db_session, test_user)
    assert sub.cancel_at_period_end is True
    assert sub.available_credits == 123
    assert sub.extra_metadata["messageCredits"] == 123


def test_new_period_resets_balance(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(), event_created=100)
    sub = _stored(db_session, test_user)
    sub.available_credits = 5
    db_session.commit()

    renewed = make_subscription(period_start=1_769_904_000, period_end=1_772_323_200)
    handle_subscription_update(db_session, gateway, renewed, event_created=200)

    assert _stored(db_session, test_user).available_credits == 500
    resets = db_session.query(CreditTransaction).filter(CreditTransaction.transaction_type == "subscription_reset")
    assert resets.count() == 2


def test_tier_change_resets_balance(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(), event_created=100)

    handle_subscription_update(db_session, gateway, make_subscription(price_id="price_power_monthly"), event_created=200)

    sub = _stored(db_session, test_user)
    assert sub.tier == "power"
    assert sub.available_credits == 3000


def test_unknown_price_leaves_record_unchanged(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(), event_created=100)
    before = _snapshot(_stored(db_session, test_user))

    result = handle_subscription_update(
        db_session, gateway, make_subscription(price_id="price_unknown"), event_created=200,
    )

    assert result is None
    assert _snapshot(_stored(db_session, test_user)) == before


def test_unknown_customer_is_ignored(db_session, gateway, test_user):
    result = handle_subscription_update(db_session, gateway, make_subscription(customer="cus_other"))

    assert result is None
    assert db_session.query(Subscription).count() == 0


def test_customer_resolved_through_subscription_row(db_session, gateway, test_user):
    test_user.stripe_customer_id = None
    db_session.commit()
    upsert_subscription(db_session, SubscriptionRecord(user_id=test_user.id, stripe_customer_id="cus_1"))

    handle_subscription_update(db_session, gateway, make_subscription())

    assert _stored(db_session, test_user).tier == "pro"


def test_stale_snapshot_is_ignored(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(price_id="price_power_monthly"), event_created=200)

    handle_subscription_update(db_session, gateway, make_subscription(), event_created=100)

    sub = _stored(db_session, test_user)
    assert sub.tier == "power"
    assert sub.last_event_at == 200


def test_deleted_resets_to_free(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(), event_created=100)

    handle_subscription_deleted(db_session, gateway, make_subscription(status="canceled"), event_created=200)

    sub = _stored(db_session, test_user)
    assert sub.tier == "free"
    assert sub.status == "canceled"
    assert sub.stripe_subscription_id is None
    assert sub.stripe_price_id is None
    assert sub.stripe_customer_id is None
    assert sub.current_period_end is None
    assert sub.available_credits is None
    # The user stays linked to the customer for the portal and future checkouts
    db_session.refresh(test_user)
    assert test_user.stripe_customer_id == "cus_1"


def test_deleted_without_existing_row_creates_free_row(db_session, gateway, test_user):
    handle_subscription_deleted(db_session, gateway, make_subscription(status="canceled"))

    sub = _stored(db_session, test_user)
    assert sub.tier == "free"
    assert sub.status == "canceled"


def test_deletion_of_superseded_subscription_is_ignored(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(subscription_id="sub_new"), event_created=100)

    handle_subscription_deleted(db_session, gateway, make_subscription(subscription_id="sub_old"), event_created=200)

    sub = _stored(db_session, test_user)
    assert sub.tier == "pro"
    assert sub.stripe_subscription_id == "sub_new"


def test_checkout_completed_fetches_subscription(db_session, gateway, test_user):
    gateway.subscriptions["sub_1"] = make_subscription()
    session = {"id": "cs_1", "object": "checkout.session", "mode": "subscription",
               "customer": "cus_1", "subscription": "sub_1", "metadata": {"userId": str(test_user.id)}}

    assert process_event(db_session, gateway, make_event("checkout.session.completed", session)) == "processed"

    assert ("retrieve_subscription", "sub_1") in gateway.calls
    assert _stored(db_session, test_user).tier == "pro"


def test_top_up_checkout_adds_credits_once(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription())
    session = {
        "id": "cs_topup", "object": "checkout.session", "mode": "payment", "payment_status": "paid",
        "customer": "cus_1",
        "metadata": {"userId": str(test_user.id), "credits": "1000", "type": "credit_topup"},
    }

    process_event(db_session, gateway, make_event("checkout.session.completed", session, event_id="evt_a"))
    process_event(db_session, gateway, make_event("checkout.session.completed", session, event_id="evt_b"))

    assert _stored(db_session, test_user).available_credits == 1500


def test_unpaid_top_up_is_not_applied(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription())
    session = {
        "id": "cs_pending", "mode": "payment", "payment_status": "unpaid",
        "metadata": {"userId": str(test_user.id), "credits": "500", "type": "credit_topup"},
    }

    process_event(db_session, gateway, make_event("checkout.session.completed", session))

    assert _stored(db_session, test_user).available_credits == 500


def test_invoice_payment_failed_syncs_status(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(), event_created=100)
    gateway.subscriptions["sub_1"] = make_subscription(status="past_due")
    invoice = {"id": "in_1", "object": "invoice", "customer": "cus_1",
               "parent": {"subscription_details": {"subscription": "sub_1"}}}

    process_event(db_session, gateway, make_event("invoice.payment_failed", invoice, created=50))

    assert _stored(db_session, test_user).status == "past_due"


def test_duplicate_event_is_processed_once(db_session, gateway, test_user):
    event = make_event("customer.subscription.updated", make_subscription(), event_id="evt_dup")

    assert process_event(db_session, gateway, event) == "processed"
    assert process_event(db_session, gateway, event) == "duplicate"

    logged = db_session.query(StripeEvent).filter(StripeEvent.stripe_event_id == "evt_dup").one()
    assert logged.processed is True
    assert logged.processed_at is not None


def test_unhandled_event_type_is_acknowledged(db_session, gateway):
    assert process_event(db_session, gateway, make_event("customer.created", {"id": "cus_9"})) == "ignored"


def test_event_without_id_is_rejected(db_session, gateway):
    with pytest.raises(ValueError):
        process_event(db_session, gateway, {"type": "customer.subscription.updated"})


def test_handler_failure_is_recorded_and_retried(db_session, gateway, test_user):
    session = {"id": "cs_1", "mode": "subscription", "customer": "cus_1", "subscription": "sub_missing"}
    event = make_event("checkout.session.completed", session, event_id="evt_fail")

    with pytest.raises(KeyError):
        process_event(db_session, gateway, event)

    logged = db_session.query(StripeEvent).filter(StripeEvent.stripe_event_id == "evt_fail").one()
    assert logged.processed is False
    assert logged.error_message

    gateway.subscriptions["sub_missing"] = make_subscription(subscription_id="sub_missing")
    assert process_event(db_session, gateway, event) == "processed"
    assert db_session.query(User).filter(User.id == test_user.id).one().subscription.tier == "pro"


def test_late_invoice_failure_after_deletion_keeps_free_tier(db_session, gateway, test_user):
    handle_subscription_update(db_session, gateway, make_subscription(), event_created=100)
    process_event(db_session, gateway, make_event(
        "customer.subscription.deleted", make_subscription(status="canceled"), event_id="evt_del", created=201,
    ))
    gateway.subscriptions["sub_1"] = make_subscription(status="canceled")
    invoice = {"id": "in_final", "object": "invoice", "customer": "cus_1", "subscription": "sub_1"}

    process_event(db_session, gateway, make_event("invoice.payment_failed", invoice, event_id="evt_inv", created=200))

    sub = _stored(db_session, test_user)
    assert sub.tier == "free"
    assert sub.status == "canceled"
    assert sub.stripe_subscription_id is None
    assert sub.stripe_price_id is None
    assert sub.available_credits is None
    resets = db_session.query(CreditTransaction).filter(CreditTransaction.transaction_type == "subscription_reset")
    assert resets.count() == 1


@pytest.mark.parametrize("status", ["canceled", "incomplete_expired"])
def test_terminal_snapshot_resets_to_free(db_session, gateway, test_user, status):
    handle_subscription_update(db_session, gateway, make_subscription(), event_created=100)
    gateway.subscriptions["sub_1"] = make_subscription(status=status)
    session = {"id": "cs_1", "mode": "subscription", "customer": "cus_1", "subscription": "sub_1"}

    process_event(db_session, gateway, make_event("checkout.session.completed", session, created=150))

    sub = _stored(db_session, test_user)
    assert sub.tier == "free"
    assert sub.status == "canceled"
    assert sub.stripe_subscription_id is None
