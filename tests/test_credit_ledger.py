"""
Tests for credit computation, top-ups and debits.
"""
from datetime import datetime, timezone

import pytest

from app.core.tier_limits import UNLIMITED
from app.db.models.credit_transaction import CreditTransaction
from app.db.models.subscription import Subscription
from app.services.credit_ledger import (
    apply_top_up,
    compute_subscription_credits,
    debit_credits,
    read_available_credits,
)
from app.services.subscription_store import SubscriptionRecord, upsert_subscription


PERIOD_END = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _pro(db, user, **fields):
    values = dict(user_id=user.id, tier="pro", available_credits=500, total_credits=500,
                  metadata={"messageCredits": 500})
    values.update(fields)
    return upsert_subscription(db, SubscriptionRecord(**values))


@pytest.mark.parametrize("tier,credits", [
    ("pro", 500),
    ("power", 3000),
    ("business_free", 100),
    ("business_starter", 10000),
])
def test_fresh_period_credits_fill_both_counters(tier, credits):
    state = compute_subscription_credits(tier, {}, PERIOD_END)

    assert state.available_credits == credits
    assert state.total_credits == credits
    assert state.credits_reset_at == PERIOD_END
    assert state.metadata["messageCredits"] == credits


def test_unlimited_tier_leaves_counters_unset():
    state = compute_subscription_credits("business_pro", {}, PERIOD_END)

    assert state.available_credits is None
    assert state.total_credits is None
    assert state.metadata["messageCredits"] == UNLIMITED


def test_free_tier_has_no_credit_state():
    state = compute_subscription_credits("free", {"foo": "bar"}, PERIOD_END)

    assert state.available_credits is None
    assert state.metadata == {"foo": "bar"}


def test_product_metadata_overrides_tier_credits():
    state = compute_subscription_credits("pro", {"messageCredits": "750"}, PERIOD_END)

    assert state.available_credits == 750
    assert state.total_credits == 750


def test_read_available_credits_fallback_chain():
    assert read_available_credits(None) is None
    assert read_available_credits(Subscription(tier="pro", available_credits=7)) == 7
    assert read_available_credits(Subscription(tier="pro", extra_metadata={"messageCredits": 9})) == 9
    assert read_available_credits(Subscription(tier="power")) == 3000
    assert read_available_credits(Subscription(tier="free")) is None


def test_top_up_adds_credits_and_records_ledger(db_session, test_user):
    _pro(db_session, test_user, available_credits=20)

    balance = apply_top_up(db_session, test_user.id, 500, source_id="cs_1")

    assert balance == 520
    sub = db_session.query(Subscription).filter(Subscription.user_id == test_user.id).first()
    assert sub.available_credits == 520
    assert sub.total_credits == 500
    assert sub.extra_metadata["messageCredits"] == 520
    transaction = db_session.query(CreditTransaction).filter(CreditTransaction.source_id == "cs_1").one()
    assert transaction.transaction_type == "topup"
    assert transaction.credits == 500
    assert transaction.balance_before == 20
    assert transaction.balance_after == 520


def test_top_up_with_same_source_applies_once(db_session, test_user):
    _pro(db_session, test_user)

    apply_top_up(db_session, test_user.id, 500, source_id="cs_dup")
    balance = apply_top_up(db_session, test_user.id, 500, source_id="cs_dup")

    assert balance == 1000
    assert db_session.query(CreditTransaction).filter(CreditTransaction.transaction_type == "topup").count() == 1


def test_top_up_requires_positive_delta(db_session, test_user):
    _pro(db_session, test_user)

    with pytest.raises(ValueError):
        apply_top_up(db_session, test_user.id, 0)


def test_top_up_without_subscription(db_session, test_user):
    with pytest.raises(LookupError):
        apply_top_up(db_session, test_user.id, 100)


def test_top_up_on_legacy_metadata_balance(db_session, test_user):
    _pro(db_session, test_user, available_credits=None, total_credits=None, metadata={"messageCredits": 40})

    assert apply_top_up(db_session, test_user.id, 100) == 140


def test_top_up_keeps_unlimited_balance(db_session, test_user):
    upsert_subscription(db_session, SubscriptionRecord(
        user_id=test_user.id, tier="business_pro", metadata={"messageCredits": UNLIMITED},
    ))

    assert apply_top_up(db_session, test_user.id, 100, source_id="cs_unlimited") == UNLIMITED

    transaction = db_session.query(CreditTransaction).filter(CreditTransaction.source_id == "cs_unlimited").one()
    assert transaction.transaction_type == "topup"
    assert transaction.credits == 0
    assert transaction.balance_after == UNLIMITED


def test_debit_clamps_at_zero(db_session, test_user):
    _pro(db_session, test_user, available_credits=3)

    assert debit_credits(db_session, test_user.id, 2) == 1
    assert debit_credits(db_session, test_user.id, 5) == 0

    sub = db_session.query(Subscription).filter(Subscription.user_id == test_user.id).first()
    assert sub.available_credits == 0
    assert sub.extra_metadata["messageCredits"] == 0


def test_debit_leaves_unlimited_untouched(db_session, test_user):
    upsert_subscription(db_session, SubscriptionRecord(
        user_id=test_user.id, tier="business_pro", metadata={"messageCredits": UNLIMITED},
    ))

    assert debit_credits(db_session, test_user.id, 10) == UNLIMITED
    assert db_session.query(CreditTransaction).count() == 0
