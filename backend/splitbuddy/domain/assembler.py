# backend/splitbuddy/domain/assembler.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Sequence

from splitbuddy.domain.errors import (
    BillError,
    DuplicateParticipantId,
    DuplicateParticipantName,
    EmptyParticipantSet,
    InvalidTaxRate,
    NoValidItems,
    Result,
    UnassignedItem,
)
from splitbuddy.domain.models import Bill, BillDraft, Item, Participant, SplitMode, valid_items
from splitbuddy.domain.split_logic import allocate_equal, allocate_itemized

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_draft(draft: BillDraft) -> Sequence[Item]:
    """
    Check a draft in a fixed order; the first violation wins.

    Returns the valid items (invalid ones are dropped, not reported).
    """
    if not draft.participants:
        raise EmptyParticipantSet()

    seen = set()
    for p in draft.participants:
        if p.name in seen:
            raise DuplicateParticipantName(p.name)
        seen.add(p.name)

    # amounts are keyed by participant id
    seen_ids = set()
    for p in draft.participants:
        if p.id in seen_ids:
            raise DuplicateParticipantId(p.id)
        seen_ids.add(p.id)

    items = valid_items(draft.items)
    if not items:
        raise NoValidItems()

    rate = draft.tax_rate_percent
    if isinstance(rate, bool) or not isinstance(rate, (Decimal, int)):
        raise InvalidTaxRate(rate)
    if isinstance(rate, Decimal) and not rate.is_finite():
        raise InvalidTaxRate(rate)
    if rate < 0 or rate >= 100:
        raise InvalidTaxRate(rate)

    if draft.split_mode is SplitMode.ITEMIZED:
        for item in items:
            if not any(item.id in p.selected_item_ids for p in draft.participants):
                raise UnassignedItem(item.id, item.name)

    return items


def _frozen_participants(draft: BillDraft, items: Sequence[Item]) -> tuple[Participant, ...]:
    if draft.split_mode is SplitMode.EQUAL:
        return tuple(
            Participant(id=p.id, name=p.name, avatar=p.avatar) for p in draft.participants
        )

    kept_ids = {item.id for item in items}
    return tuple(
        Participant(
            id=p.id,
            name=p.name,
            avatar=p.avatar,
            selected_item_ids=frozenset(p.selected_item_ids & kept_ids),
        )
        for p in draft.participants
    )


def assemble(draft: BillDraft, *, clock: Optional[Clock] = None) -> Result[Bill]:
    """
    Validate a draft, run the allocator for its split mode and return the
    finished, immutable Bill. Nothing is persisted here.
    """
    try:
        items = validate_draft(draft)
        participants = _frozen_participants(draft, items)

        if draft.split_mode is SplitMode.EQUAL:
            allocation = allocate_equal(items, participants, draft.tax_rate_percent)
        else:
            allocation = allocate_itemized(items, participants, draft.tax_rate_percent)
    except BillError as e:
        logger.info("Bill '%s' rejected: %s", draft.title, e)
        return Result.failure(e)

    bill = Bill(
        id=draft.id or str(uuid.uuid4()),
        title=draft.title,
        items=tuple(items),
        participants=allocation.apply(participants),
        tax_rate_percent=Decimal(draft.tax_rate_percent),
        split_mode=draft.split_mode,
        created_at=(clock or _utcnow)(),
    )
    logger.debug(
        "Assembled bill %s (%s, %d items, %d participants, total %s)",
        bill.id,
        bill.split_mode.value,
        len(bill.items),
        len(bill.participants),
        allocation.grand_total,
    )
    return Result.success(bill)


def assemble_bill(
    title: str,
    items: Sequence[Item],
    participants: Sequence[Participant],
    tax_rate_percent: Decimal,
    split_mode: SplitMode,
    *,
    bill_id: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> Result[Bill]:
    """
    Convenience: build the draft and assemble it in one call.
    """
    draft = BillDraft(
        title=title,
        items=tuple(items),
        participants=tuple(participants),
        tax_rate_percent=tax_rate_percent,
        split_mode=split_mode,
        id=bill_id,
    )
    return assemble(draft, clock=clock)
