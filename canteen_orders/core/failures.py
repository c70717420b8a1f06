"""
Order failure taxonomy

A closed set of tagged variants discriminated by ``kind``. Callers branch
on ``failure.kind`` (or ``match`` on it); every variant carries structured
context for rendering plus a human readable ``message``.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field


class EntityKind(str, Enum):
    """Entities the store can load by id"""
    PARENT = "parent"
    STUDENT = "student"
    CANTEEN = "canteen"
    MENU_ITEM = "menu_item"
    ORDER = "order"


class FailureKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_REQUEST = "invalid_request"
    CUT_OFF_EXCEEDED = "cut_off_exceeded"
    INSUFFICIENT_STOCK = "insufficient_stock"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    ALLERGEN_CONFLICT = "allergen_conflict"
    DUPLICATE_REQUEST = "duplicate_request"
    INVALID_TRANSITION = "invalid_transition"
    STORE_FAILURE = "store_failure"


class _FailureBase(BaseModel):
    model_config = {"frozen": True}

    @property
    def error_code(self) -> str:
        return self.kind.upper()

    @property
    def message(self) -> str:
        raise NotImplementedError

    def details(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude={"kind"})


class NotFound(_FailureBase):
    kind: Literal["not_found"] = "not_found"
    entity_kind: EntityKind
    id: int

    @property
    def message(self) -> str:
        label = self.entity_kind.value.replace("_", " ").capitalize()
        return f"{label} with ID {self.id} not found"


class InvalidRequest(_FailureBase):
    kind: Literal["invalid_request"] = "invalid_request"
    field: str
    reason: str

    @property
    def message(self) -> str:
        return f"Invalid {self.field}: {self.reason}"


class CutOffExceeded(_FailureBase):
    kind: Literal["cut_off_exceeded"] = "cut_off_exceeded"
    cutoff_instant: datetime
    requested_instant: datetime

    @property
    def message(self) -> str:
        return (f"Order cut-off time ({self.cutoff_instant:%Y-%m-%d %H:%M}) has been "
                f"exceeded. Requested at {self.requested_instant:%Y-%m-%d %H:%M}")


class InsufficientStock(_FailureBase):
    kind: Literal["insufficient_stock"] = "insufficient_stock"
    menu_item_id: int
    name: str
    requested: int
    available: int

    @property
    def message(self) -> str:
        return (f"Insufficient stock for '{self.name}'. "
                f"Requested: {self.requested}, Available: {self.available}")


class InsufficientBalance(_FailureBase):
    kind: Literal["insufficient_balance"] = "insufficient_balance"
    required: Decimal
    available: Decimal

    @property
    def message(self) -> str:
        return (f"Insufficient wallet balance. "
                f"Required: {self.required:.2f}, Available: {self.available:.2f}")


class AllergenConflict(_FailureBase):
    kind: Literal["allergen_conflict"] = "allergen_conflict"
    student_name: str
    menu_item_name: str
    conflicting_tags: List[str]

    @property
    def message(self) -> str:
        return (f"Allergen conflict for student '{self.student_name}' with menu item "
                f"'{self.menu_item_name}'. Conflicting allergens: "
                f"{', '.join(self.conflicting_tags)}")


class DuplicateRequest(_FailureBase):
    kind: Literal["duplicate_request"] = "duplicate_request"
    idempotency_key: str
    existing_order_id: int

    @property
    def message(self) -> str:
        return (f"Order with idempotency key '{self.idempotency_key}' already exists "
                f"(Order ID: {self.existing_order_id})")


class InvalidTransition(_FailureBase):
    kind: Literal["invalid_transition"] = "invalid_transition"
    from_state: str
    event: str

    @property
    def message(self) -> str:
        return f"Cannot {self.event} an order in state {self.from_state}"


class StoreFailure(_FailureBase):
    kind: Literal["store_failure"] = "store_failure"
    cause: str
    retryable: bool = True

    @property
    def message(self) -> str:
        return f"Order store failure: {self.cause}"


OrderFailure = Annotated[
    Union[
        NotFound,
        InvalidRequest,
        CutOffExceeded,
        InsufficientStock,
        InsufficientBalance,
        AllergenConflict,
        DuplicateRequest,
        InvalidTransition,
        StoreFailure,
    ],
    Field(discriminator="kind"),
]
