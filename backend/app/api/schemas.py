"""
Pydantic request schemas for the health-reporting API.

Separated from the route handlers so they are reusable across the codebase
(services, tests). Field names follow the wire format (``waterSource``,
``manualEmails`` ...) through aliases; missing or invalid fields surface as
400 responses naming the offending fields.
"""

from __future__ import annotations

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.app.alerts.models import AlertChannel, AudienceSelector
from backend.app.core.config import settings
from backend.app.storage.entities import (
    EMAIL_PATTERN,
    AlertLevel,
    ContactType,
    Severity,
    TicketStatus,
    WaterSource,
)


class RequestModel(BaseModel):
    """Common config: aliases on the wire, enums stored as plain values."""
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        use_enum_values=True,
        validate_default=True,
    )


def _strip_blank(values: List[str]) -> List[str]:
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class RegisterRequest(RequestModel):
    name: str = Field(..., min_length=1, examples=["Asha Devi"])
    email: str = Field(..., pattern=EMAIL_PATTERN, examples=["asha@example.org"])
    password: str = Field(..., min_length=settings.PASSWORD_MIN_LENGTH)
    role: Optional[str] = Field(
        None,
        description="community | health_worker | national_admin; anything else → community",
    )
    location: Optional[str] = Field(None, examples=["Majuli"])
    phone_number: Optional[str] = Field(None, alias="phoneNumber")


class LoginRequest(RequestModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

class ReportCreate(RequestModel):
    """Body for POST /api/reports."""
    state: Optional[str] = Field(None, examples=["Assam"])
    location: str = Field(..., min_length=1, examples=["Majuli"])
    symptoms: Union[List[str], str] = Field(..., examples=[["Diarrhea", "Fever"]])
    water_source: WaterSource = Field(..., alias="waterSource")
    severity: Severity = Severity.LOW
    notes: Optional[str] = None
    count: int = Field(
        1, ge=1, le=settings.MAX_REPORT_FANOUT,
        description="Number of identical case reports to file",
    )
    registered_cases: int = Field(0, ge=0, alias="registeredCases")

    @field_validator("symptoms")
    @classmethod
    def _symptom_list(cls, value: Union[List[str], str]) -> List[str]:
        symptoms = _strip_blank([value] if isinstance(value, str) else value)
        if not symptoms:
            raise ValueError("at least one symptom is required")
        return symptoms


# ---------------------------------------------------------------------------
# Contact groups
# ---------------------------------------------------------------------------

class ContactGroupCreate(RequestModel):
    name: str = Field(..., min_length=1, examples=["Majuli ASHA workers"])
    type: ContactType = ContactType.MIXED
    contacts: List[str] = Field(..., examples=[["a@example.org", "+919800000000"]])
    description: Optional[str] = None

    @field_validator("contacts")
    @classmethod
    def _non_empty_contacts(cls, value: List[str]) -> List[str]:
        contacts = _strip_blank(value)
        if not contacts:
            raise ValueError("at least one contact is required")
        return contacts


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

class DeliveryOptions(RequestModel):
    """Channels and recipients chosen when an alert is approved."""
    channels: List[AlertChannel] = Field(default_factory=list)
    target_audience: Optional[AudienceSelector] = Field(None, alias="targetAudience")
    manual_phone_numbers: List[str] = Field(default_factory=list, alias="manualPhoneNumbers")
    manual_emails: List[str] = Field(default_factory=list, alias="manualEmails")
    target_groups: List[str] = Field(default_factory=list, alias="targetGroups")

    def as_kwargs(self) -> dict:
        return {
            "channels": list(self.channels),
            "target_audience": self.target_audience,
            "manual_phone_numbers": self.manual_phone_numbers,
            "manual_emails": self.manual_emails,
            "target_groups": self.target_groups,
        }


class AlertCreate(DeliveryOptions):
    location: str = Field(..., min_length=1, examples=["Majuli"])
    level: AlertLevel = Field(..., examples=["high"])
    message: str = Field(..., min_length=1)


class AlertActiveUpdate(RequestModel):
    is_active: bool = Field(..., alias="isActive")


# ---------------------------------------------------------------------------
# Support
# ---------------------------------------------------------------------------

class SupportTicketCreate(RequestModel):
    message: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, examples=["water"])


class SupportMessageCreate(RequestModel):
    text: str = Field(..., min_length=1)


class SupportTicketUpdate(RequestModel):
    status: TicketStatus
