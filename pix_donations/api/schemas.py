"""
Pydantic schemas for API request/response models.
"""
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CreateChargeRequest(BaseModel):
    """
    Request schema for creating a donation charge.

    Fields are deliberately loose; the charge flow owns validation so that
    malformed input maps to the same 409 as an unregistered donor.
    """

    donor_tax_id: Optional[str] = Field(
        default=None, alias="donorTaxId", description="Donor tax id (11 digits, punctuation allowed)"
    )
    amount: Optional[str] = Field(default=None, description="Donation amount, e.g. 50.00")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [{"donorTaxId": "123.456.789-01", "amount": "50.00"}]
        },
    )

    @field_validator("donor_tax_id", "amount", mode="before")
    @classmethod
    def coerce_to_text(cls, v: Any) -> Any:
        """Accept numbers where text is expected."""
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            return str(v)
        return v


class CreateChargeResponse(BaseModel):
    """Response schema for charge creation."""

    donor_name: str = Field(..., description="Registered donor name")
    donor_registry_ref: Optional[str] = Field(default=None, description="Donor registry reference")
    amount: Decimal = Field(..., description="Charge amount")
    tx_id: str = Field(..., description="Gateway transaction id")
    qr_code: str = Field(..., description="QR code payload location")
    copy_paste: str = Field(..., description="Pix copy-and-paste code")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "donorName": "Jane Doe",
                    "donorRegistryRef": "CIM-1234",
                    "amount": "50.00",
                    "txId": "7978c0c97ea847e78e8849634473c1f1",
                    "qrCode": "pix.example.com/qr/v2/9d36b84f",
                    "copyPaste": "00020101021226830014BR.GOV.BCB.PIX...",
                }
            ]
        },
    )


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")

