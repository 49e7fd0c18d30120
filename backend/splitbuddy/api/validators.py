from __future__ import annotations

import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Set

from splitbuddy.domain.models import BillDraft, Item, Participant, SplitMode
from splitbuddy.domain.money import MoneyError, parse_amount


class ApiValidationError(ValueError):
    """Raised when request payload validation fails."""


def _optional_id(raw: Dict[str, Any], what: str, idx: int) -> str:
    value = raw.get("id")
    if value is None:
        return str(uuid.uuid4())
    if not isinstance(value, str) or not value.strip():
        raise ApiValidationError(f"{what} at index {idx} has an invalid 'id'.")
    return value.strip()


def parse_items(raw_items: object) -> List[Item]:
    """
    Items keep their place even when invalid (empty name / zero price);
    the assembler drops those, so a half-filled form still previews.
    """
    if not isinstance(raw_items, list):
        raise ApiValidationError("'items' must be a list.")

    items: List[Item] = []
    seen_ids: Set[str] = set()
    for idx, raw_item in enumerate(raw_items):
        if not isinstance(raw_item, dict):
            raise ApiValidationError(f"Item at index {idx} must be an object.")

        item_id = _optional_id(raw_item, "Item", idx)
        if item_id in seen_ids:
            raise ApiValidationError("Item ids must be unique.")
        seen_ids.add(item_id)

        name = raw_item.get("name", "")
        if not isinstance(name, str):
            raise ApiValidationError(f"Item at index {idx} must have a string 'name'.")

        raw_price = raw_item.get("price", "0")
        if raw_price in ("", None):
            raw_price = "0"
        try:
            price = parse_amount(raw_price)
        except MoneyError as e:
            raise ApiValidationError(f"Item at index {idx} has an invalid 'price': {e}") from e

        items.append(Item(id=item_id, name=name.strip(), price=price))

    return items


def parse_participants(raw_participants: object, *, known_item_ids: Set[str]) -> List[Participant]:
    if not isinstance(raw_participants, list):
        raise ApiValidationError("'participants' must be a list.")

    participants: List[Participant] = []
    seen_ids: Set[str] = set()
    for idx, raw in enumerate(raw_participants):
        if not isinstance(raw, dict):
            raise ApiValidationError(f"Participant at index {idx} must be an object.")

        pid = _optional_id(raw, "Participant", idx)
        if pid in seen_ids:
            raise ApiValidationError("Participant ids must be unique.")
        seen_ids.add(pid)

        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ApiValidationError(f"Participant at index {idx} must include a non-empty 'name'.")

        avatar = raw.get("avatar", "")
        if not isinstance(avatar, str):
            raise ApiValidationError(f"Participant at index {idx} has an invalid 'avatar'.")

        selected = raw.get("selected_item_ids", [])
        if not isinstance(selected, list) or not all(isinstance(s, str) for s in selected):
            raise ApiValidationError(
                f"Participant at index {idx} must have 'selected_item_ids' as a list of item ids."
            )
        for item_id in selected:
            if item_id not in known_item_ids:
                raise ApiValidationError(f"Participant '{name.strip()}' selected unknown item id: {item_id}")

        participants.append(
            Participant(
                id=pid,
                name=name.strip(),
                avatar=avatar,
                selected_item_ids=frozenset(selected),
            )
        )

    return participants


def parse_tax_rate(raw: object) -> Decimal:
    """
    Only the shape is checked here; the [0, 100) range is the assembler's rule.
    """
    if raw is None or raw == "":
        return Decimal("0")
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
        raise ApiValidationError("'tax_rate_percent' must be a number.")
    try:
        rate = Decimal(str(raw).strip().replace(",", "."))
    except InvalidOperation as e:
        raise ApiValidationError("'tax_rate_percent' must be a number.") from e
    return rate


def parse_split_mode(raw: object) -> SplitMode:
    if not isinstance(raw, str):
        raise ApiValidationError("'split_mode' must be 'equal' or 'itemized'.")
    try:
        return SplitMode(raw.strip().lower())
    except ValueError as e:
        raise ApiValidationError("'split_mode' must be 'equal' or 'itemized'.") from e


def parse_bill_draft(data: object) -> BillDraft:
    if not isinstance(data, dict):
        raise ApiValidationError("Request body must be a JSON object.")

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ApiValidationError("Please input title.")

    items = parse_items(data.get("items"))
    participants = parse_participants(
        data.get("participants"), known_item_ids={item.id for item in items}
    )

    return BillDraft(
        title=title.strip(),
        items=tuple(items),
        participants=tuple(participants),
        tax_rate_percent=parse_tax_rate(data.get("tax_rate_percent")),
        split_mode=parse_split_mode(data.get("split_mode")),
    )


def parse_convert_request(data: object) -> tuple[Decimal, str, str]:
    if not isinstance(data, dict):
        raise ApiValidationError("Request body must be a JSON object.")
    try:
        amount = parse_amount(data.get("amount"))
    except MoneyError as e:
        raise ApiValidationError(f"Invalid 'amount': {e}") from e

    source = data.get("from", "USD")
    target = data.get("to")
    if not isinstance(source, str) or not isinstance(target, str):
        raise ApiValidationError("'from' and 'to' must be currency codes.")
    return amount, source, target
