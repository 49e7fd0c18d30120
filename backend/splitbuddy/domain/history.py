# backend/splitbuddy/domain/history.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from splitbuddy.domain.errors import BillError, InconsistentBillData, Result
from splitbuddy.domain.models import Bill, SplitMode
from splitbuddy.domain.money import CENT, ZERO, money_to_str, sum_money
from splitbuddy.domain.split_logic import (
    Allocation,
    ItemShare,
    allocate_equal,
    allocate_itemized,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersonBreakdown:
    participant_id: str
    name: str
    avatar: str
    amount: Decimal
    items: Tuple[ItemShare, ...] = ()


@dataclass(frozen=True)
class Summary:
    bill_id: str
    title: str
    split_mode: SplitMode
    created_at: datetime
    tax_rate_percent: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    grand_total: Decimal
    breakdown: Tuple[PersonBreakdown, ...]

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.bill_id,
            "title": self.title,
            "split_mode": self.split_mode.value,
            "date": self.created_at.isoformat(),
            "tax_rate_percent": str(self.tax_rate_percent),
            "subtotal": money_to_str(self.subtotal),
            "tax_amount": money_to_str(self.tax_amount),
            "grand_total": money_to_str(self.grand_total),
            "participants": [
                {
                    "id": person.participant_id,
                    "name": person.name,
                    "avatar": person.avatar,
                    "amount": money_to_str(person.amount),
                    "items": [
                        {
                            "id": share.item_id,
                            "name": share.item_name,
                            "price": money_to_str(share.price),
                            "share": money_to_str(share.share_amount),
                        }
                        for share in person.items
                    ],
                }
                for person in self.breakdown
            ],
        }


def _check_stored_amounts(bill: Bill, allocation: Allocation, tolerance: Decimal) -> None:
    for p in bill.participants:
        expected = allocation.owed_by_participant_id[p.id]
        stored = p.owed_amount if p.owed_amount is not None else ZERO
        if abs(expected - stored) > tolerance:
            raise InconsistentBillData.amount_mismatch(bill.id, p.name, expected, stored)


def _summarize_equal(bill: Bill, tolerance: Decimal) -> Summary:
    # grand total is re-derived from the items, never taken from the record
    allocation = allocate_equal(bill.items, bill.participants, bill.tax_rate_percent)
    _check_stored_amounts(bill, allocation, tolerance)

    breakdown = tuple(
        PersonBreakdown(
            participant_id=p.id,
            name=p.name,
            avatar=p.avatar,
            amount=allocation.owed_by_participant_id[p.id],
        )
        for p in bill.participants
    )
    return Summary(
        bill_id=bill.id,
        title=bill.title,
        split_mode=bill.split_mode,
        created_at=bill.created_at,
        tax_rate_percent=bill.tax_rate_percent,
        subtotal=allocation.subtotal,
        tax_amount=allocation.tax_amount,
        grand_total=allocation.grand_total,
        breakdown=breakdown,
    )


def _summarize_itemized(bill: Bill, tolerance: Decimal) -> Summary:
    allocation = allocate_itemized(bill.items, bill.participants, bill.tax_rate_percent)
    _check_stored_amounts(bill, allocation, tolerance)

    stored = {p.id: p.owed_amount if p.owed_amount is not None else ZERO for p in bill.participants}
    grand_total = sum_money(stored.values())

    # rounding slack: half a cent per participant
    slack = CENT / 2 * len(bill.participants)
    if abs(grand_total - allocation.grand_total) > max(slack, tolerance):
        raise InconsistentBillData(
            bill.id,
            f"stored total {grand_total} does not match item total {allocation.grand_total}.",
            expected=allocation.grand_total,
            stored=grand_total,
        )

    breakdown = tuple(
        PersonBreakdown(
            participant_id=p.id,
            name=p.name,
            avatar=p.avatar,
            amount=stored[p.id],
            items=tuple(s for s in allocation.item_shares if p.id in s.payer_ids),
        )
        for p in bill.participants
    )
    return Summary(
        bill_id=bill.id,
        title=bill.title,
        split_mode=bill.split_mode,
        created_at=bill.created_at,
        tax_rate_percent=bill.tax_rate_percent,
        subtotal=allocation.subtotal,
        tax_amount=grand_total - allocation.subtotal,
        grand_total=grand_total,
        breakdown=breakdown,
    )


def summarize_bill(bill: Bill, *, tolerance: Decimal = CENT) -> Result[Summary]:
    """
    Re-derive display totals for a stored bill without mutating it.

    EQUAL bills are recomputed from items and tax rate; ITEMIZED bills are
    totalled from the stored per-person amounts. Either way the stored
    amounts are cross-checked against a fresh allocation and a mismatch
    beyond `tolerance` is reported as InconsistentBillData.
    """
    try:
        if bill.split_mode is SplitMode.EQUAL:
            summary = _summarize_equal(bill, tolerance)
        else:
            summary = _summarize_itemized(bill, tolerance)
    except InconsistentBillData as e:
        logger.warning("Inconsistent bill data: %s", e)
        return Result.failure(e)
    except BillError as e:
        # a stored bill that no longer allocates (e.g. an orphaned item) is corrupt too
        logger.warning("Stored bill %s no longer allocates: %s", bill.id, e)
        return Result.failure(InconsistentBillData(bill.id, f"stored data no longer allocates: {e}"))
    return Result.success(summary)


def summarize_history(
    bills: Iterable[Bill], *, tolerance: Decimal = CENT
) -> List[Tuple[Bill, Result[Summary]]]:
    """
    Summaries of all bills, newest first.
    """
    ordered = sorted(bills, key=lambda b: b.created_at, reverse=True)
    return [(bill, summarize_bill(bill, tolerance=tolerance)) for bill in ordered]


def latest_activity(bills: Iterable[Bill], *, tolerance: Decimal = CENT) -> Optional[Result[Summary]]:
    history = summarize_history(bills, tolerance=tolerance)
    if not history:
        return None
    return history[0][1]
