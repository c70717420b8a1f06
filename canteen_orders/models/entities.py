"""
Referenced entity models
Parent, Student, Canteen and MenuItem as loaded from the store. Orders refer
to them by id only.
"""

from datetime import datetime, time
from decimal import Decimal
from typing import FrozenSet, Optional

from pydantic import Field, field_validator

from .base import BaseEntity, normalize_tags

CUTOFF_TIME_FORMATS = ("%H:%M", "%H:%M:%S")


class Parent(BaseEntity):
    """Parent account holding the wallet"""
    id: int = Field(..., description="Parent ID")
    name: str = Field(..., max_length=100, description="Name")
    email: str = Field(..., max_length=255, description="Email")
    wallet_balance: Decimal = Field(Decimal("0.00"), ge=0, description="Wallet balance")
    version: int = Field(1, description="Optimistic concurrency token")

    def debit(self, amount: Decimal) -> None:
        """Take amount out of the wallet; validation ran beforehand"""
        self.wallet_balance = self.wallet_balance - amount


class Student(BaseEntity):
    """Student the order is for"""
    id: int = Field(..., description="Student ID")
    parent_id: int = Field(..., description="Owning parent ID")
    name: str = Field(..., max_length=100, description="Name")
    allergens: FrozenSet[str] = Field(default_factory=frozenset, description="Allergen tags")

    @field_validator("allergens", mode="before")
    @classmethod
    def normalize_allergens(cls, value):
        return normalize_tags(value)

    @property
    def has_allergens(self) -> bool:
        return bool(self.allergens)


class Canteen(BaseEntity):
    """Canteen with its optional order cut-off"""
    id: int = Field(..., description="Canteen ID")
    name: str = Field(..., max_length=100, description="Name")
    opening_days: Optional[str] = Field(None, max_length=200, description="Opening days, comma separated")
    order_cutoff_time: Optional[str] = Field(None, description="Cut-off time of day, HH:MM")

    @property
    def parsed_cutoff_time(self) -> Optional[time]:
        """
        Cut-off as a time of day

        Returns None when unset or unparseable; the cut-off rule is skipped
        in both cases.
        """
        raw = (self.order_cutoff_time or "").strip()
        if not raw:
            return None
        for fmt in CUTOFF_TIME_FORMATS:
            try:
                return datetime.strptime(raw, fmt).time()
            except ValueError:
                continue
        return None


class MenuItem(BaseEntity):
    """Menu item with price, optional daily stock and allergen tags"""
    id: int = Field(..., description="Menu item ID")
    canteen_id: int = Field(..., description="Canteen ID")
    name: str = Field(..., max_length=100, description="Name")
    description: Optional[str] = Field(None, max_length=500, description="Description")
    price: Decimal = Field(..., ge=0, description="Unit price")
    daily_stock_count: Optional[int] = Field(None, description="Remaining stock today; None means unlimited")
    allergen_tags: FrozenSet[str] = Field(default_factory=frozenset, description="Allergen tags")
    version: int = Field(1, description="Optimistic concurrency token")

    @field_validator("allergen_tags", mode="before")
    @classmethod
    def normalize_allergen_tags(cls, value):
        return normalize_tags(value)

    @property
    def has_stock_limit(self) -> bool:
        return self.daily_stock_count is not None

    def take_stock(self, quantity: int) -> None:
        """Decrement the daily counter; unlimited items are left alone"""
        if self.daily_stock_count is not None:
            self.daily_stock_count -= quantity
