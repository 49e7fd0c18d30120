# backend/splitbuddy/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class BillError(ValueError):
    """
    Base for every engine error.

    `code` is stable and machine-readable (used in API error bodies);
    str(error) is the human-readable message naming the violated rule.
    """
    code = "bill_error"

    @property
    def message(self) -> str:
        return str(self)


class EmptyParticipantSet(BillError):
    code = "empty_participant_set"

    def __init__(self) -> None:
        super().__init__("Please add at least one participant.")


class DuplicateParticipantName(BillError):
    code = "duplicate_participant_name"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Participant name '{name}' is used more than once.")


class DuplicateParticipantId(BillError):
    code = "duplicate_participant_id"

    def __init__(self, participant_id: str) -> None:
        self.participant_id = participant_id
        super().__init__(f"Participant id '{participant_id}' is used more than once.")


class NoValidItems(BillError):
    code = "no_valid_items"

    def __init__(self) -> None:
        super().__init__("The bill needs at least one item with a name and a price above zero.")


class InvalidTaxRate(BillError):
    code = "invalid_tax_rate"

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Tax rate must be a percentage in [0, 100), got {value}.")


class UnassignedItem(BillError):
    code = "unassigned_item"

    def __init__(self, item_id: str, item_name: str = "") -> None:
        self.item_id = item_id
        self.item_name = item_name
        label = f"'{item_name}' ({item_id})" if item_name else item_id
        super().__init__(f"Item {label} must be paid for by at least one participant.")


class InconsistentBillData(BillError):
    code = "inconsistent_bill_data"

    def __init__(
        self,
        bill_id: str,
        detail: str,
        *,
        participant_name: Optional[str] = None,
        expected: Optional[Decimal] = None,
        stored: Optional[Decimal] = None,
    ) -> None:
        self.bill_id = bill_id
        self.participant_name = participant_name
        self.expected = expected
        self.stored = stored
        super().__init__(f"Bill {bill_id}: {detail}")

    @classmethod
    def amount_mismatch(
        cls, bill_id: str, participant_name: str, expected: Decimal, stored: Decimal
    ) -> "InconsistentBillData":
        return cls(
            bill_id,
            f"stored amount {stored} for '{participant_name}' does not match recomputed amount {expected}.",
            participant_name=participant_name,
            expected=expected,
            stored=stored,
        )


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Tagged outcome of an engine operation: exactly one of value/error is set.
    """
    value: Optional[T] = None
    error: Optional[BillError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BillError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
