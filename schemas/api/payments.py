"""Payment API schemas."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

PlanTypeLiteral = Literal["monthly", "yearly", "test"]


class PayPalButtonSchema(BaseModel):
    planType: PlanTypeLiteral
    buttonId: str
    displayName: str
    amount: float
    currency: str


class PayPalConfigResponse(BaseModel):
    clientId: str = Field(..., description="Public client id used by the PayPal SDK script.")
    currency: Optional[str] = Field(default="USD", description="Checkout currency.")
    buttons: List[PayPalButtonSchema] = Field(default_factory=list, description="Hosted buttons per plan.")


class PayPalConfirmRequest(BaseModel):
    orderId: str = Field(..., min_length=1, description="Order id returned by the PayPal onApprove callback.")
    planType: Optional[PlanTypeLiteral] = Field(default=None, description="Plan being purchased.")
    buttonId: Optional[str] = Field(default=None, description="Hosted button id, used when planType is absent.")

    @model_validator(mode="after")
    def _require_plan_hint(self) -> "PayPalConfirmRequest":
        if not self.planType and not self.buttonId:
            raise ValueError("planType or buttonId is required.")
        return self


class PayPalErrorRequest(BaseModel):
    message: Optional[str] = Field(default=None, description="Error message reported by the PayPal SDK.")


class CheckoutOutcomeResponse(BaseModel):
    result: Literal["activated", "already_applied", "canceled", "failed", "activation_failed"]
    message: str
    planType: Optional[PlanTypeLiteral] = None
    orderId: Optional[str] = None
    currentPeriodEnd: Optional[str] = None


class PayPalWebhookResponse(BaseModel):
    status: str = "accepted"
    result: Optional[str] = None
