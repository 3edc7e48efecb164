"""
entities.py — Record schemas shared by both storage backends.

Each entity is declared once as an ``EntitySchema``:

    • field list (kind, default, allowed values, required / non-empty rules)
    • static reference table  (field → target entity) used by populate()
    • SQL table name           (used by the database backend only)

Records themselves are plain dicts keyed by the wire-format field names
(``waterSource``, ``createdBy`` ...) plus three system fields:

    id          32-char lower-case hex, generated on create
    createdAt   timezone-aware UTC datetime
    updatedAt   refreshed on every update

═══════════════════════════════════════════════════════════════════════════
REFERENCE TABLE
═══════════════════════════════════════════════════════════════════════════

    Entity          Field         Target
    ──────────      ──────────    ────────────
    Report          userId        User
    Alert           createdBy     User
    Alert           approvedBy    User
    Alert           targetGroups  ContactGroup   (list-valued)
    ContactGroup    createdBy     User
    SupportTicket   userId        User
    SupportTicket   resolvedBy    User
"""

from __future__ import annotations

import copy
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from backend.app.core.errors import InvalidIdentifierError, ValidationError

Record = Dict[str, Any]

SYSTEM_FIELDS: Tuple[str, ...] = ("id", "createdAt", "updatedAt")

ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")
EMAIL_PATTERN = r"^\S+@\S+\.\S+$"


def new_id() -> str:
    return uuid.uuid4().hex


def is_valid_id(value: Any) -> bool:
    """True if *value* parses as a record identifier."""
    return isinstance(value, str) and ID_PATTERN.match(value) is not None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Coerce an ISO-8601 string or datetime to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise TypeError(f"Expected datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ═══════════════════════════════════════════════════════════════════════════
# Vocabularies
# ═══════════════════════════════════════════════════════════════════════════

class Role(str, Enum):
    COMMUNITY      = "community"
    HEALTH_WORKER  = "health_worker"
    ADMIN          = "admin"
    NATIONAL_ADMIN = "national_admin"


ADMIN_ROLES: Tuple[str, ...] = (Role.ADMIN.value, Role.NATIONAL_ADMIN.value)
STAFF_ROLES: Tuple[str, ...] = (Role.HEALTH_WORKER.value,) + ADMIN_ROLES
ALL_ROLES: Tuple[str, ...] = tuple(r.value for r in Role)


class WaterSource(str, Enum):
    RIVER          = "River"
    WELL           = "Well"
    COMMUNITY_WELL = "Community Well"
    POND           = "Pond"
    TAP_WATER      = "Tap Water"
    OTHER          = "Other"


class Severity(str, Enum):
    LOW    = "Low"
    MEDIUM = "Medium"
    HIGH   = "High"


class ReportStatus(str, Enum):
    PENDING       = "pending"
    INVESTIGATING = "investigating"
    RESOLVED      = "resolved"


class AlertLevel(str, Enum):
    """Both the lower-case and the colour-coded vocabularies are accepted."""
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"
    YELLOW   = "Yellow"
    ORANGE   = "Orange"
    RED      = "Red"
    LOW_CAP    = "Low"
    MEDIUM_CAP = "Medium"
    HIGH_CAP   = "High"


class AlertStatus(str, Enum):
    PENDING  = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ContactType(str, Enum):
    SMS   = "sms"
    EMAIL = "email"
    MIXED = "mixed"


class TicketStatus(str, Enum):
    OPEN        = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED    = "resolved"


# Support categories a role may file tickets under
SUPPORT_CATEGORIES_BY_ROLE: Dict[str, Tuple[str, ...]] = {
    Role.COMMUNITY.value: (
        "water", "sanitation", "infrastructure", "health_concern", "other",
    ),
    Role.HEALTH_WORKER.value: (
        "supplies", "equipment", "staffing", "emergency", "logistics",
    ),
    Role.ADMIN.value: (),
    Role.NATIONAL_ADMIN.value: (),
}

TICKET_CATEGORIES: Tuple[str, ...] = ("support", "bug", "feedback") + tuple(
    c for cats in SUPPORT_CATEGORIES_BY_ROLE.values() for c in cats
)


def _values(enum_cls) -> Tuple[str, ...]:
    return tuple(member.value for member in enum_cls)


# ═══════════════════════════════════════════════════════════════════════════
# Schema declarations
# ═══════════════════════════════════════════════════════════════════════════

class FieldKind(str, Enum):
    STRING    = "string"
    INTEGER   = "integer"
    BOOLEAN   = "boolean"
    DATETIME  = "datetime"
    LIST      = "list"
    DICT      = "dict"
    REFERENCE = "reference"


class RecordValidationError(ValidationError, ValueError):
    """A record violates its schema (surfaced to clients as 400)."""

    def __init__(self, entity: str, field_name: str, message: str):
        super().__init__(
            f"{entity}.{field_name}: {message}",
            field=field_name, entity=entity,
        )
        self.entity = entity
        self.field = field_name


@dataclass(frozen=True)
class FieldSpec:
    """One stored field."""
    name: str
    kind: FieldKind = FieldKind.STRING
    default: Any = None                         # value, or zero-arg callable
    choices: Optional[Tuple[str, ...]] = None
    required: bool = False
    non_empty: bool = False                     # lists only
    minimum: Optional[int] = None               # integers only
    strip: bool = False
    lowercase: bool = False
    pattern: Optional[str] = None
    indexed: bool = False
    unique: bool = False

    def default_value(self) -> Any:
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)


@dataclass(frozen=True)
class EntitySchema:
    name: str
    table_name: str
    fields: Tuple[FieldSpec, ...]
    references: Mapping[str, str] = field(default_factory=dict)

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def get_field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(f"{self.name} has no field '{name}'")

    def datetime_fields(self) -> Tuple[str, ...]:
        own = tuple(f.name for f in self.fields if f.kind == FieldKind.DATETIME)
        return ("createdAt", "updatedAt") + own

    # ── validation ──

    def _coerce(self, spec: FieldSpec, value: Any) -> Any:
        if value is None:
            if spec.required:
                raise RecordValidationError(self.name, spec.name, "is required")
            return None

        kind = spec.kind
        if kind in (FieldKind.STRING, FieldKind.REFERENCE):
            if not isinstance(value, str):
                raise RecordValidationError(self.name, spec.name, "must be a string")
            if spec.strip:
                value = value.strip()
            if spec.lowercase:
                value = value.lower()
            if spec.required and not value:
                raise RecordValidationError(self.name, spec.name, "is required")
            if spec.pattern and not re.match(spec.pattern, value):
                raise RecordValidationError(self.name, spec.name, "has an invalid format")
        elif kind == FieldKind.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                raise RecordValidationError(self.name, spec.name, "must be an integer")
            if spec.minimum is not None and value < spec.minimum:
                raise RecordValidationError(
                    self.name, spec.name, f"must be >= {spec.minimum}",
                )
        elif kind == FieldKind.BOOLEAN:
            if not isinstance(value, bool):
                raise RecordValidationError(self.name, spec.name, "must be a boolean")
        elif kind == FieldKind.DATETIME:
            try:
                value = parse_datetime(value)
            except (TypeError, ValueError) as exc:
                raise RecordValidationError(self.name, spec.name, str(exc)) from exc
        elif kind == FieldKind.LIST:
            if not isinstance(value, (list, tuple)):
                raise RecordValidationError(self.name, spec.name, "must be a list")
            value = list(value)
            if spec.non_empty and not value:
                raise RecordValidationError(
                    self.name, spec.name, "must contain at least one entry",
                )
        elif kind == FieldKind.DICT:
            if not isinstance(value, dict):
                raise RecordValidationError(self.name, spec.name, "must be an object")

        if spec.choices is not None and value not in spec.choices:
            raise RecordValidationError(
                self.name, spec.name,
                f"must be one of {list(spec.choices)}",
            )
        return value

    def normalise(self, values: Mapping[str, Any], *, partial: bool = False) -> Record:
        """
        Validate and clean *values*.

        With ``partial=True`` only the supplied keys are checked (update
        patches); otherwise missing fields receive their defaults.
        """
        known = set(self.field_names)
        unknown = [k for k in values if k not in known and k not in SYSTEM_FIELDS]
        if unknown:
            raise RecordValidationError(self.name, unknown[0], "is not a known field")

        cleaned: Record = {}
        for spec in self.fields:
            if spec.name in values:
                cleaned[spec.name] = self._coerce(spec, values[spec.name])
            elif not partial:
                cleaned[spec.name] = self._coerce(spec, spec.default_value())
        return cleaned

    def new_record(self, values: Mapping[str, Any]) -> Record:
        """Full record ready to store: defaults, generated id and timestamps."""
        record = self.normalise(values)
        now = utc_now()
        record["id"] = new_id()
        record["createdAt"] = now
        record["updatedAt"] = now
        return record

    def from_storage(self, raw: Mapping[str, Any]) -> Record:
        """Rehydrate a record read from JSON (ISO strings → datetimes)."""
        record = dict(raw)
        for name in self.datetime_fields():
            if record.get(name) is not None:
                record[name] = parse_datetime(record[name])
        return record


USER = EntitySchema(
    name="User",
    table_name="users",
    fields=(
        FieldSpec("name", required=True, strip=True),
        FieldSpec("email", required=True, strip=True, lowercase=True,
                  pattern=EMAIL_PATTERN, indexed=True, unique=True),
        FieldSpec("password", required=True),
        FieldSpec("role", default=Role.COMMUNITY.value,
                  choices=ALL_ROLES, indexed=True),
        FieldSpec("location", strip=True),
        FieldSpec("phoneNumber", strip=True, default=""),
        FieldSpec("lastLogin", FieldKind.DATETIME),
    ),
)

REPORT = EntitySchema(
    name="Report",
    table_name="reports",
    fields=(
        FieldSpec("userId", FieldKind.REFERENCE, required=True, indexed=True),
        FieldSpec("state", default="Assam", required=True, strip=True),
        FieldSpec("location", required=True, strip=True, indexed=True),
        FieldSpec("symptoms", FieldKind.LIST, required=True, non_empty=True),
        FieldSpec("waterSource", required=True, choices=_values(WaterSource)),
        FieldSpec("severity", default=Severity.LOW.value,
                  choices=_values(Severity), indexed=True),
        FieldSpec("notes", default="", strip=True),
        FieldSpec("registeredCases", FieldKind.INTEGER, default=0, minimum=0),
        FieldSpec("status", default=ReportStatus.PENDING.value,
                  choices=_values(ReportStatus)),
        FieldSpec("timestamp", FieldKind.DATETIME, default=utc_now, indexed=True),
    ),
    references={"userId": "User"},
)

ALERT = EntitySchema(
    name="Alert",
    table_name="alerts",
    fields=(
        FieldSpec("location", required=True, strip=True, indexed=True),
        FieldSpec("level", required=True, choices=_values(AlertLevel), indexed=True),
        FieldSpec("message", required=True),
        FieldSpec("reportCount", FieldKind.INTEGER, default=0, minimum=0),
        FieldSpec("createdBy", FieldKind.REFERENCE),
        FieldSpec("isActive", FieldKind.BOOLEAN, default=True, indexed=True),
        FieldSpec("status", default=AlertStatus.PENDING.value,
                  choices=_values(AlertStatus)),
        FieldSpec("approvedBy", FieldKind.REFERENCE),
        FieldSpec("approvedAt", FieldKind.DATETIME),
        FieldSpec("channels", FieldKind.LIST, default=list),
        FieldSpec("targetAudience", default="affected_area"),
        FieldSpec("resolvedAt", FieldKind.DATETIME),
        FieldSpec("broadcastSummary", FieldKind.DICT),
        FieldSpec("manualPhoneNumbers", FieldKind.LIST, default=list),
        FieldSpec("manualEmails", FieldKind.LIST, default=list),
        FieldSpec("targetGroups", FieldKind.LIST, default=list),
    ),
    references={
        "createdBy": "User",
        "approvedBy": "User",
        "targetGroups": "ContactGroup",
    },
)

CONTACT_GROUP = EntitySchema(
    name="ContactGroup",
    table_name="contact_groups",
    fields=(
        FieldSpec("name", required=True, strip=True),
        FieldSpec("type", default=ContactType.MIXED.value,
                  choices=_values(ContactType)),
        FieldSpec("contacts", FieldKind.LIST, required=True, non_empty=True),
        FieldSpec("description"),
        FieldSpec("createdBy", FieldKind.REFERENCE, required=True, indexed=True),
    ),
    references={"createdBy": "User"},
)

SUPPORT_TICKET = EntitySchema(
    name="SupportTicket",
    table_name="support_tickets",
    fields=(
        FieldSpec("userId", FieldKind.REFERENCE, required=True, indexed=True),
        FieldSpec("message", required=True),
        FieldSpec("type", default="support", choices=TICKET_CATEGORIES),
        FieldSpec("status", default=TicketStatus.OPEN.value,
                  choices=_values(TicketStatus)),
        FieldSpec("resolvedBy", FieldKind.REFERENCE),
        FieldSpec("messages", FieldKind.LIST, default=list),
    ),
    references={"userId": "User", "resolvedBy": "User"},
)

SCHEMAS: Dict[str, EntitySchema] = {
    schema.name: schema
    for schema in (USER, REPORT, ALERT, CONTACT_GROUP, SUPPORT_TICKET)
}


def get_schema(name: str) -> EntitySchema:
    try:
        return SCHEMAS[name]
    except KeyError:
        raise KeyError(f"Unknown entity '{name}'") from None


def public_user(user: Mapping[str, Any]) -> Record:
    """User record without credentials, as returned by the API."""
    return {
        "id": user.get("id"),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role"),
        "createdAt": user.get("createdAt"),
        "lastLogin": user.get("lastLogin"),
    }


def ensure_valid_id(resource: str, value: Any) -> str:
    """Return *value* if it is a well-formed id, else raise a 400."""
    if not is_valid_id(value):
        raise InvalidIdentifierError(resource, str(value))
    return value
