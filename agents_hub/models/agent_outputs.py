"""Pydantic schemas for agent outputs and shared payload shapes.

Defaulting rules are explicit: list fields the model omits become empty
lists, and every upsell suggestion carries its own ``menu:<item_id>``
citation whether or not the model remembered to include it.
"""

import uuid
from dataclasses import dataclass
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator


class CartItem(BaseModel):
    """A single cart line supplied by the diner client."""
    item_id: str = Field(..., description="Menu item UUID")
    quantity: int = Field(..., ge=1, description="Quantity, at least 1")

    @field_validator("item_id", mode="before")
    @classmethod
    def item_id_is_uuid(cls, value):
        try:
            return str(uuid.UUID(str(value)))
        except ValueError:
            raise ValueError("item_id must be a UUID")


class UpsellSuggestion(BaseModel):
    """A candidate add-on surfaced to the diner."""
    item_id: str
    name: str
    price_cents: int = Field(..., ge=0)
    currency: str
    rationale: str = Field(..., min_length=1)
    allergens: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    is_alcohol: bool = False
    citations: List[str] = Field(default_factory=list)
    impression_id: Optional[str] = None

    @field_validator("rationale")
    @classmethod
    def rationale_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("rationale must not be blank")
        return value

    @model_validator(mode="after")
    def ensure_menu_citation(self) -> "UpsellSuggestion":
        menu_citation = f"menu:{self.item_id}"
        if menu_citation not in self.citations:
            self.citations.insert(0, menu_citation)
        return self


class UpsellOutput(BaseModel):
    suggestions: List[UpsellSuggestion] = Field(default_factory=list)


class BlockedItem(BaseModel):
    item_id: str
    allergens: List[str] = Field(default_factory=list)
    reason: Optional[str] = None


class SafeItem(BaseModel):
    item_id: str
    rationale: Optional[str] = None


class AllergenGuardianOutput(BaseModel):
    blocked: List[BlockedItem] = Field(default_factory=list)
    safe: List[SafeItem] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)


class WaiterUpsellReference(BaseModel):
    """An item the waiter chose to mention; only the id is trusted."""
    item_id: str
    name: Optional[str] = None

    model_config = {"extra": "allow"}


class WaiterOutput(BaseModel):
    reply: str = Field(..., min_length=1)
    upsell: List[WaiterUpsellReference] = Field(default_factory=list)
    disclaimers: List[str] = Field(default_factory=list)
    citations: List[str] = Field(..., min_length=1)

    @field_validator("reply")
    @classmethod
    def reply_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reply must not be blank")
        return value


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )
