"""Pydantic schemas for the plan catalog."""

from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

PlanTypeLiteral = Literal["monthly", "yearly", "test"]


class PlanPriceSchema(BaseModel):
    amount: float = Field(..., ge=0, description="Price per billing interval.")
    currency: str = Field(default="USD", description="ISO currency code.")
    interval: str = Field(default="month", description="Billing interval label.")

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return (value or "USD").strip().upper()


class BillingPeriodSchema(BaseModel):
    unit: Literal["hour", "month", "year"]
    count: int = Field(..., ge=1)


class PlanCatalogEntrySchema(BaseModel):
    planType: PlanTypeLiteral
    displayName: str
    description: Optional[str] = None
    price: PlanPriceSchema
    billingPeriod: Optional[BillingPeriodSchema] = Field(
        default=None,
        description="Derived from the plan type; ignored on update.",
    )
    buttonId: Optional[str] = Field(default=None, description="PayPal hosted button id.")
    providerPlanId: Optional[str] = Field(default=None, description="PayPal billing plan id (P-...).")
    enabled: bool = True


class PlanCatalogResponse(BaseModel):
    plans: List[PlanCatalogEntrySchema] = Field(default_factory=list)
    updatedAt: Optional[str] = None
    updatedBy: Optional[str] = None
    note: Optional[str] = None


class PlanCatalogUpdateRequest(BaseModel):
    plans: List[PlanCatalogEntrySchema] = Field(default_factory=list)
    updatedBy: Optional[str] = None
    note: Optional[str] = None
    expectedUpdatedAt: Optional[str] = Field(
        default=None,
        description="updatedAt value last seen by the caller; mismatches are rejected with 409.",
    )

