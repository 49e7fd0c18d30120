# backend/splitbuddy/domain/split_logic.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from fractions import Fraction
from typing import Dict, List, Sequence, Tuple

from splitbuddy.domain.errors import EmptyParticipantSet, UnassignedItem
from splitbuddy.domain.models import Item, Participant
from splitbuddy.domain.money import round_money, tax_multiplier, to_fraction


@dataclass(frozen=True)
class ItemShare:
    """
    One item split among its payers.

    share is exact: share * len(payer_ids) == price.
    """
    item_id: str
    item_name: str
    price: Decimal
    payer_ids: Tuple[str, ...]
    share: Fraction

    @property
    def share_amount(self) -> Decimal:
        return round_money(self.share)


@dataclass(frozen=True)
class Allocation:
    """
    Allocation result for a whole bill.

    owed_by_participant_id values are rounded to cents; pre_tax keeps the
    exact per-participant consumption.
    """
    subtotal: Decimal
    tax_amount: Decimal
    grand_total: Decimal
    owed_by_participant_id: Dict[str, Decimal]
    pre_tax_by_participant_id: Dict[str, Fraction]
    item_shares: Tuple[ItemShare, ...] = ()

    def apply(self, participants: Sequence[Participant]) -> Tuple[Participant, ...]:
        return tuple(p.with_owed_amount(self.owed_by_participant_id[p.id]) for p in participants)


def _subtotal(items: Sequence[Item]) -> Fraction:
    return sum((to_fraction(item.price) for item in items), Fraction(0))


def tax_line(items: Sequence[Item], tax_rate_percent: Decimal) -> Decimal:
    """
    Tax as a synthetic display line: subtotal * rate / 100.
    Never consumes participant shares.
    """
    return round_money(_subtotal(items) * to_fraction(tax_rate_percent) / 100)


def allocate_equal(
    items: Sequence[Item],
    participants: Sequence[Participant],
    tax_rate_percent: Decimal,
) -> Allocation:
    """
    Divide the whole bill, tax included, evenly:

      total = subtotal * (1 + rate/100)
      per_person = total / n

    Every participant gets the identical rounded amount. Zero items means
    everybody owes 0.
    """
    if len(participants) == 0:
        raise EmptyParticipantSet()

    subtotal = _subtotal(items)
    total = subtotal * tax_multiplier(tax_rate_percent)
    per_person_exact = total / len(participants)
    per_person = round_money(per_person_exact)

    return Allocation(
        subtotal=round_money(subtotal),
        tax_amount=tax_line(items, tax_rate_percent),
        grand_total=round_money(total),
        owed_by_participant_id={p.id: per_person for p in participants},
        pre_tax_by_participant_id={p.id: subtotal / len(participants) for p in participants},
    )


def item_shares(items: Sequence[Item], participants: Sequence[Participant]) -> List[ItemShare]:
    """
    Resolve payers and the exact equal share of every item.

    Raises UnassignedItem for the first item (in bill order) nobody selected.
    """
    shares: List[ItemShare] = []
    for item in items:
        payers = tuple(p.id for p in participants if item.id in p.selected_item_ids)
        if not payers:
            raise UnassignedItem(item.id, item.name)
        shares.append(
            ItemShare(
                item_id=item.id,
                item_name=item.name,
                price=item.price,
                payer_ids=payers,
                share=to_fraction(item.price) / len(payers),
            )
        )
    return shares


def allocate_itemized(
    items: Sequence[Item],
    participants: Sequence[Participant],
    tax_rate_percent: Decimal,
) -> Allocation:
    """
    Attribute every item to the participants who selected it, then apply tax
    in proportion to each participant's consumption:

      owed(p) = (sum of p's item shares) * (1 + rate/100)

    Shares are exact Fractions; rounding happens once per participant.
    """
    if len(participants) == 0:
        raise EmptyParticipantSet()

    shares = item_shares(items, participants)

    pre_tax: Dict[str, Fraction] = {p.id: Fraction(0) for p in participants}
    for s in shares:
        for pid in s.payer_ids:
            pre_tax[pid] += s.share

    multiplier = tax_multiplier(tax_rate_percent)
    subtotal = _subtotal(items)
    total = subtotal * multiplier

    return Allocation(
        subtotal=round_money(subtotal),
        tax_amount=tax_line(items, tax_rate_percent),
        grand_total=round_money(total),
        owed_by_participant_id={pid: round_money(amount * multiplier) for pid, amount in pre_tax.items()},
        pre_tax_by_participant_id=pre_tax,
        item_shares=tuple(shares),
    )
