# backend/splitbuddy/domain/models.py
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from splitbuddy.domain.money import ZERO, money_to_str


class ModelValidationError(ValueError):
    """Raised when a stored record cannot be turned back into a Bill."""


class SplitMode(str, Enum):
    EQUAL = "equal"
    ITEMIZED = "itemized"


@dataclass(frozen=True)
class Item:
    """
    A priced line on the bill.
    Construction never fails; use is_valid_item() before allocating.
    """
    id: str
    name: str
    price: Decimal


@dataclass(frozen=True)
class Participant:
    """
    A person taking part in the split.

    owed_amount is written once by an allocator; selected_item_ids only
    matters for ITEMIZED bills.
    """
    id: str
    name: str
    avatar: str = ""
    selected_item_ids: FrozenSet[str] = field(default_factory=frozenset)
    owed_amount: Optional[Decimal] = None

    def with_owed_amount(self, amount: Decimal) -> "Participant":
        return replace(self, owed_amount=amount)


@dataclass(frozen=True)
class BillDraft:
    """
    An in-progress bill as entered by the user. May contain invalid items.
    """
    title: str
    items: Tuple[Item, ...]
    participants: Tuple[Participant, ...]
    tax_rate_percent: Decimal
    split_mode: SplitMode
    id: Optional[str] = None


@dataclass(frozen=True)
class Bill:
    id: str
    title: str
    items: Tuple[Item, ...]
    participants: Tuple[Participant, ...]
    tax_rate_percent: Decimal
    split_mode: SplitMode
    created_at: datetime

    @property
    def is_equally(self) -> bool:
        return self.split_mode is SplitMode.EQUAL


def is_valid_item(item: Item) -> bool:
    return bool(item.name.strip()) and item.price > 0


def valid_items(items: Iterable[Item]) -> List[Item]:
    return [item for item in items if is_valid_item(item)]


def _item_to_record(item: Item) -> Dict[str, Any]:
    return {"id": item.id, "name": item.name, "price": str(item.price)}


def bill_to_record(bill: Bill) -> Dict[str, Any]:
    """
    Serialize a Bill into the JSON-compatible record handed to persistence.
    Amounts are decimal strings.
    """
    participants = []
    for p in bill.participants:
        foods = [
            _item_to_record(item)
            for item in bill.items
            if item.id in p.selected_item_ids
        ]
        participants.append(
            {
                "id": p.id,
                "name": p.name,
                "price": money_to_str(p.owed_amount if p.owed_amount is not None else ZERO),
                "icon": p.avatar,
                "foods": foods,
            }
        )

    return {
        "id": bill.id,
        "title": bill.title,
        "date": bill.created_at.isoformat(),
        "isEqually": bill.is_equally,
        "tax": str(bill.tax_rate_percent),
        "items": [_item_to_record(item) for item in bill.items],
        "participants": participants,
    }


def _decimal_field(raw: Dict[str, Any], key: str, where: str) -> Decimal:
    if not isinstance(raw, dict):
        raise ModelValidationError(f"{where} must be an object")
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, (str, int, Decimal)):
        raise ModelValidationError(f"{where}.{key} must be a decimal string")
    try:
        d = Decimal(str(value))
    except ArithmeticError as e:
        raise ModelValidationError(f"{where}.{key} is not a decimal: {value}") from e
    if not d.is_finite():
        raise ModelValidationError(f"{where}.{key} is not a finite decimal: {value}")
    return d


def _str_field(raw: Dict[str, Any], key: str, where: str) -> str:
    if not isinstance(raw, dict):
        raise ModelValidationError(f"{where} must be an object")
    value = raw.get(key)
    if not isinstance(value, str):
        raise ModelValidationError(f"{where}.{key} must be a string")
    return value


def bill_from_record(record: Dict[str, Any]) -> Bill:
    """
    Rebuild a Bill from a stored record (inverse of bill_to_record).
    """
    if not isinstance(record, dict):
        raise ModelValidationError("bill record must be an object")

    raw_items = record.get("items")
    raw_participants = record.get("participants")
    if not isinstance(raw_items, list) or not isinstance(raw_participants, list):
        raise ModelValidationError("bill record must contain 'items' and 'participants' lists")

    items = tuple(
        Item(
            id=_str_field(raw, "id", "item"),
            name=_str_field(raw, "name", "item"),
            price=_decimal_field(raw, "price", "item"),
        )
        for raw in raw_items
    )

    participants = []
    for raw in raw_participants:
        if not isinstance(raw, dict):
            raise ModelValidationError("participant must be an object")
        foods = raw.get("foods") or []
        if not isinstance(foods, list):
            raise ModelValidationError("participant.foods must be a list")
        participants.append(
            Participant(
                id=_str_field(raw, "id", "participant"),
                name=_str_field(raw, "name", "participant"),
                avatar=raw.get("icon") or "",
                selected_item_ids=frozenset(_str_field(f, "id", "food") for f in foods),
                owed_amount=_decimal_field(raw, "price", "participant"),
            )
        )

    is_equally = record.get("isEqually")
    if not isinstance(is_equally, bool):
        raise ModelValidationError("bill.isEqually must be true or false")

    raw_date = _str_field(record, "date", "bill")
    try:
        created_at = datetime.fromisoformat(raw_date)
    except ValueError as e:
        raise ModelValidationError("bill.date must be an ISO-8601 timestamp") from e
    # naive timestamps are stored as UTC
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    else:
        created_at = created_at.astimezone(timezone.utc)

    return Bill(
        id=_str_field(record, "id", "bill"),
        title=_str_field(record, "title", "bill"),
        items=items,
        participants=tuple(participants),
        tax_rate_percent=_decimal_field(record, "tax", "bill"),
        split_mode=SplitMode.EQUAL if is_equally else SplitMode.ITEMIZED,
        created_at=created_at,
    )
