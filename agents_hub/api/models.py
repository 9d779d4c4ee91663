"""API request/response models."""

from typing import List, Literal, Optional
from uuid import UUID
from pydantic import BaseModel, Field, field_validator, model_validator

from agents_hub.models.agent_context import AGENT_TYPES
from agents_hub.models.agent_outputs import CartItem, UpsellSuggestion


# ============================================================================
# Waiter Models
# ============================================================================

class WaiterRequest(BaseModel):
    """Request model for a diner chat message."""
    message: str = Field(..., min_length=1, description="Diner message")
    table_session_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    user_id: Optional[UUID] = None
    session_id: Optional[UUID] = Field(default=None, description="Existing agent session to continue")
    language: Optional[str] = None
    allergies: Optional[List[str]] = None
    cart: Optional[List[CartItem]] = None
    age_verified: Optional[bool] = None

    @model_validator(mode="after")
    def require_location_or_table_session(self) -> "WaiterRequest":
        if self.location_id is None and self.table_session_id is None:
            raise ValueError("Either location_id or table_session_id must be provided.")
        return self


class WaiterResponse(BaseModel):
    """Response model for the waiter pipeline."""
    session_id: str
    reply: str
    upsell: List[UpsellSuggestion]
    disclaimers: List[str]
    citations: List[str]
    cost_usd: float


# ============================================================================
# Feedback Models
# ============================================================================

class FeedbackRequest(BaseModel):
    """Diner thumbs-up/down on an agent reply."""
    session_id: UUID
    agent_type: str = Field(..., min_length=1)
    rating: Literal["up", "down"]
    message_id: Optional[str] = None
    tenant_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    table_session_id: Optional[UUID] = None

    @field_validator("agent_type")
    @classmethod
    def known_agent_type(cls, value: str) -> str:
        if value not in AGENT_TYPES:
            raise ValueError(f"agent_type must be one of: {', '.join(AGENT_TYPES)}")
        return value


class FeedbackResponse(BaseModel):
    status: str = Field(default="recorded")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None
    details: Optional[List[dict]] = None
