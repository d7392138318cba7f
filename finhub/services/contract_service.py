"""
Contract Lifecycle
"""
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional
import logging

from finhub.core.exceptions import ConflictError, ValidationError
from finhub.core.money import ZERO, to_decimal
from finhub.schemas import Contract, ContractStatus, ContractType
from finhub.services.lifecycle import StateMachine, Transition

logger = logging.getLogger(__name__)

C = ContractStatus

CONTRACT_LIFECYCLE = StateMachine("contract", [
    Transition("sign", frozenset({C.DRAFT.value}), C.PENDING_SIGNATURE.value, "Sign"),
    Transition("activate", frozenset({C.PENDING_SIGNATURE.value}), C.ACTIVE.value, "Activate"),
    Transition("complete", frozenset({C.ACTIVE.value}), C.COMPLETED.value, "Complete"),
    Transition("cancel", frozenset({C.DRAFT.value, C.PENDING_SIGNATURE.value, C.ACTIVE.value}),
               C.CANCELLED.value, "Cancel"),
    Transition("expire", frozenset({C.ACTIVE.value}), C.EXPIRED.value, "Expire", user_action=False),
])


def check_transition(contract: Contract, event: str, signed_date: Optional[date] = None,
                     today: Optional[date] = None) -> str:
    """
    Validate event against contract and return the resulting status.

    Nothing is mutated; the caller sends the request only when this passes.
    A contract past its end date is treated as expired.
    """
    current = display_status(contract, today)
    if CONTRACT_LIFECYCLE.target_of(event) == current.value:
        return current.value
    if event == "sign" and (signed_date or contract.signed_date) is None:
        raise ValidationError.single("signed_date", "Signed date is required")
    return CONTRACT_LIFECYCLE.transition(current, event)


def is_noop(contract: Contract, event: str) -> bool:
    """Repeating an already-applied event needs no request"""
    return (not CONTRACT_LIFECYCLE.can(contract.status, event)
            and CONTRACT_LIFECYCLE.target_of(event) == contract.status.value)


def is_expired(contract: Contract, today: Optional[date] = None) -> bool:
    """An active contract whose end date has passed is expired, whatever the stored status says"""
    today = today or date.today()
    if contract.status == C.EXPIRED:
        return True
    return contract.status == C.ACTIVE and contract.end_date is not None and contract.end_date < today


def display_status(contract: Contract, today: Optional[date] = None) -> ContractStatus:
    return C.EXPIRED if is_expired(contract, today) else contract.status


def available_actions(contract: Contract, today: Optional[date] = None) -> List[str]:
    if is_expired(contract, today):
        return []
    return [t.event for t in CONTRACT_LIFECYCLE.available(contract.status)]


def is_editable(contract: Contract) -> bool:
    return not CONTRACT_LIFECYCLE.is_terminal(contract.status)


def revenue_cache_keys(contract: Contract) -> List[str]:
    """API paths whose cached responses go stale after any lifecycle transition"""
    keys = ["/revenue"]
    if contract.client_id:
        keys.append(f"/clients/{contract.client_id}/revenue")
    return keys


def expiring_within(contracts: Iterable[Contract], days: int = 30, today: Optional[date] = None) -> List[Contract]:
    """Active contracts ending in the next `days` days, soonest first"""
    today = today or date.today()
    horizon = today + timedelta(days=days)
    expiring = [
        c for c in contracts
        if c.status == C.ACTIVE and c.end_date is not None and today <= c.end_date <= horizon
    ]
    return sorted(expiring, key=lambda c: c.end_date)


def validate_contract(data: Mapping[str, Any], existing: Optional[Contract] = None) -> None:
    if existing is not None and not is_editable(existing):
        raise ConflictError(f"A {existing.status.value.replace('_', ' ')} contract can no longer be edited")

    errors: Dict[str, List[str]] = {}
    if not (data.get("title") or "").strip():
        errors["title"] = ["Title is required"]
    if not data.get("client_id"):
        errors["client_id"] = ["Client is required"]
    if not data.get("start_date"):
        errors["start_date"] = ["Start date is required"]
    if data.get("start_date") and data.get("end_date") and str(data["end_date"]) < str(data["start_date"]):
        errors["end_date"] = ["End date cannot be before the start date"]

    contract_type = data.get("contract_type") or ContractType.FIXED.value
    if contract_type not in {t.value for t in ContractType}:
        errors["contract_type"] = ["Unknown contract type"]

    raw_value = data.get("value")
    if raw_value not in (None, ""):
        value = to_decimal(raw_value, default=None)
        if value is None:
            errors["value"] = ["Value must be a number"]
        elif value < ZERO:
            errors["value"] = ["Value cannot be negative"]

    if errors:
        raise ValidationError(errors)


def build_contract_payload(data: Mapping[str, Any]) -> dict:
    """Request body for POST/PUT /contracts"""
    value = data.get("value")
    return {
        "title": (data.get("title") or "").strip(),
        "clientId": data.get("client_id"),
        "type": data.get("contract_type") or ContractType.FIXED.value,
        "value": str(to_decimal(value)) if value not in (None, "") else None,
        "startDate": str(data.get("start_date")),
        "endDate": str(data["end_date"]) if data.get("end_date") else None,
        "autoRenewal": bool(data.get("auto_renew")),
        "description": data.get("description") or None,
        "notes": data.get("notes") or None,
    }
