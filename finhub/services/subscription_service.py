"""
Subscription Billing Engine - MRR/ARR normalization and status lifecycle
"""
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from dateutil.relativedelta import relativedelta

from finhub.core.exceptions import ValidationError
from finhub.core.money import ZERO, to_decimal
from finhub.schemas import BillingCycle, Subscription, SubscriptionStatus
from finhub.services.lifecycle import StateMachine, Transition

logger = logging.getLogger(__name__)

S = SubscriptionStatus

MONTHS_PER_CYCLE = {
    BillingCycle.MONTHLY.value: 1,
    BillingCycle.QUARTERLY.value: 3,
    BillingCycle.ANNUAL.value: 12,
}

# Unknown cycles advance this many days when computing the next bill
DEFAULT_CYCLE_DAYS = 30

SUBSCRIPTION_LIFECYCLE = StateMachine("subscription", [
    Transition("activate", frozenset({S.TRIAL.value}), S.ACTIVE.value, "Activate"),
    Transition("pause", frozenset({S.ACTIVE.value}), S.PAUSED.value, "Pause"),
    Transition("resume", frozenset({S.PAUSED.value}), S.ACTIVE.value, "Resume"),
    Transition("cancel", frozenset({S.ACTIVE.value, S.PAST_DUE.value, S.PAUSED.value}), S.CANCELLED.value, "Cancel"),
    Transition("mark_past_due", frozenset({S.ACTIVE.value}), S.PAST_DUE.value, "Mark past due", user_action=False),
    Transition("recover", frozenset({S.PAST_DUE.value}), S.ACTIVE.value, "Recover", user_action=False),
    Transition("expire", frozenset({S.ACTIVE.value}), S.EXPIRED.value, "Expire", user_action=False),
])


def _cycle_value(billing_cycle: Any) -> str:
    if isinstance(billing_cycle, BillingCycle):
        return billing_cycle.value
    return str(billing_cycle or "").strip().lower()


def monthly_value(amount: Any, billing_cycle: Any) -> Decimal:
    """
    Normalize a billing amount to a monthly figure.

    monthly -> amount, quarterly -> amount / 3, annual -> amount / 12,
    anything else -> 0.
    """
    months = MONTHS_PER_CYCLE.get(_cycle_value(billing_cycle))
    if months is None:
        return ZERO
    return to_decimal(amount) / months


def annual_value(mrr: Any) -> Decimal:
    """ARR is always MRR * 12"""
    return to_decimal(mrr) * 12


def contributes_mrr(subscription: Subscription, as_of: Optional[date] = None) -> bool:
    as_of = as_of or date.today()
    if subscription.status != S.ACTIVE:
        return False
    if subscription.start_date is not None and subscription.start_date > as_of:
        return False
    if subscription.cancellation_date is not None and subscription.cancellation_date <= as_of:
        return False
    return True


def subscription_mrr(subscription: Subscription, as_of: Optional[date] = None) -> Decimal:
    if not contributes_mrr(subscription, as_of):
        return ZERO
    return monthly_value(subscription.amount, subscription.billing_cycle)


def total_mrr(subscriptions: Iterable[Subscription], as_of: Optional[date] = None) -> Decimal:
    total = ZERO
    for subscription in subscriptions:
        total += subscription_mrr(subscription, as_of)
    return total


def next_billing_date(current: date, billing_cycle: Any) -> date:
    months = MONTHS_PER_CYCLE.get(_cycle_value(billing_cycle))
    if months is None:
        return current + timedelta(days=DEFAULT_CYCLE_DAYS)
    return current + relativedelta(months=months)


def apply_event(subscription: Subscription, event: str, on: Optional[date] = None) -> Subscription:
    """Subscription after event; cancel also stamps the cancellation date"""
    new_status = SUBSCRIPTION_LIFECYCLE.transition(subscription.status, event)
    update: Dict[str, Any] = {"status": SubscriptionStatus(new_status)}
    if event == "cancel" and subscription.status != S.CANCELLED:
        update["cancellation_date"] = on or date.today()
    return subscription.model_copy(update=update)


def cancel(subscription: Subscription, on: Optional[date] = None) -> Subscription:
    return apply_event(subscription, "cancel", on)


def available_actions(subscription: Subscription) -> List[str]:
    return [t.event for t in SUBSCRIPTION_LIFECYCLE.available(subscription.status)]


def is_editable(subscription: Subscription) -> bool:
    return not SUBSCRIPTION_LIFECYCLE.is_terminal(subscription.status)


def upcoming_renewals(subscriptions: Iterable[Subscription], days_ahead: int = 30,
                      today: Optional[date] = None) -> List[Subscription]:
    """Active subscriptions billing within the next days_ahead days, soonest first"""
    today = today or date.today()
    horizon = today + timedelta(days=days_ahead)
    due = [
        s for s in subscriptions
        if s.status == S.ACTIVE and s.next_billing_date is not None and today <= s.next_billing_date <= horizon
    ]
    return sorted(due, key=lambda s: s.next_billing_date)


def validate_subscription(data: Mapping[str, Any]) -> None:
    errors: Dict[str, List[str]] = {}
    if not (data.get("name") or "").strip():
        errors["name"] = ["Name is required"]
    if not data.get("client_id"):
        errors["client_id"] = ["Client is required"]
    amount = to_decimal(data.get("amount"), default=None)
    if amount is None:
        errors["amount"] = ["Amount is required"]
    elif amount <= ZERO:
        errors["amount"] = ["Amount must be positive"]
    if _cycle_value(data.get("billing_cycle")) not in MONTHS_PER_CYCLE:
        errors["billing_cycle"] = ["Billing cycle is required"]
    if not data.get("start_date"):
        errors["start_date"] = ["Start date is required"]
    if errors:
        raise ValidationError(errors)


def build_subscription_payload(data: Mapping[str, Any], existing: Optional[Subscription] = None) -> dict:
    """
    Request body for POST/PUT /subscriptions.

    An edit that keeps the start date keeps the billing schedule it already has.
    """
    start = data.get("start_date")
    payload = {
        "name": (data.get("name") or "").strip(),
        "clientId": data.get("client_id"),
        "contractId": data.get("contract_id") or None,
        "amount": str(to_decimal(data.get("amount"))),
        "billingCycle": _cycle_value(data.get("billing_cycle")),
        "startDate": str(start) if start else None,
        "autoRenewal": bool(data.get("auto_renew")),
        "description": data.get("description") or None,
    }
    if existing is not None and existing.next_billing_date and existing.start_date == start:
        payload["nextBillingDate"] = str(existing.next_billing_date)
    elif isinstance(start, date):
        payload["nextBillingDate"] = str(next_billing_date(start, data.get("billing_cycle")))
    return payload
