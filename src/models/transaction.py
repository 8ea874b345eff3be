"""Transaction and organization data models"""

from pydantic import BaseModel, Field
import datetime as dt
from typing import Optional
from src.constants import BusinessType

# Fields the core may write back through the ledger's annotation API
ANNOTATION_FIELDS = frozenset({
    "vendor_normalized",
    "category_id",
    "is_recurring",
    "classification_confidence",
})


class Transaction(BaseModel):
    """Ledger transaction, read-only except for annotation fields"""

    txn_id: str = Field(..., description="Unique transaction ID")
    organization_id: str = Field(..., description="Owning organization")
    date: dt.date = Field(..., description="Posting date")
    amount: float = Field(..., description="Signed amount in USD (negative = debit)")
    vendor: str = Field("", description="Vendor text as it appears on the statement")
    description: Optional[str] = Field(None, description="Free-text memo")
    vendor_id: Optional[str] = Field(None, description="Vendor ID assigned upstream")
    category_id: Optional[str] = Field(None, description="Spending category / account code")
    source: str = Field("bank", description="Feed that produced the row (bank, credit_card, ...)")
    vendor_normalized: Optional[str] = Field(None, description="Canonical vendor name (annotation)")
    is_recurring: Optional[bool] = Field(None, description="Recurring charge flag (annotation)")
    classification_confidence: Optional[float] = Field(
        None, ge=0, le=1, description="Confidence of category_id (annotation)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "txn_id": "txn_000123",
                "organization_id": "org_acme",
                "date": "2025-03-14",
                "amount": -8340.00,
                "vendor": "AMZN WEB SERVICES",
                "category_id": "COGS-HOST",
                "source": "bank",
            }
        }


class Organization(BaseModel):
    """Tenant organization"""

    id: str = Field(..., description="Organization ID")
    name: str = Field("", description="Display name")
    business_type: BusinessType = Field(BusinessType.OTHER, description="Business vertical")
