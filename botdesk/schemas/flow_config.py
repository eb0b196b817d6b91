# botdesk/schemas/flow_config.py
"""
Pydantic schemas for the bot conversation-flow document (``botSettings``).

Python attributes are snake_case; the backend document keeps camelCase keys,
so every aliased field round-trips through ``by_alias`` dumps.
Length and cardinality bounds are enforced by the flow editor, not here:
a persisted document that breaks them must still load so it can be fixed.
"""
import logging
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

log = logging.getLogger("botdesk.schemas.flow_config")

DEFAULT_GREETING = "Hola, soy el asistente virtual. ¿En qué puedo ayudarte hoy?"
DEFAULT_SCHEDULE_MESSAGE = (
    "Por favor ingresa la fecha y hora en la cual deseas agendar con nosotros "
    "(ejemplo: '15 de julio a las 3pm')"
)
DEFAULT_SCHEDULE_CONFIRMATION = "Tu cita para {date} a las {time} ha sido agendada."
DEFAULT_MODIFICATION_CONFIRMATION = "Cita modificada exitosamente."
DEFAULT_CANCELLATION_CONFIRMATION = "Cita cancelada."
DEFAULT_ORDER_ACKNOWLEDGEMENT = "Gracias. En breve un encargado le responderá."

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DEFAULT_WORKING_DAYS = ["monday", "tuesday", "wednesday", "thursday", "friday"]


# ────────────────────────────────────────────
# Enums
# ────────────────────────────────────────────

class TemplateName(str, Enum):
    """Preset business templates"""
    CONSULTORIO = "consultorio"
    BARBERIA = "barberia"
    SERVICIOS = "servicios"
    CUSTOM = "custom"


class ItemKind(str, Enum):
    """What a menu entry does when the customer picks it"""
    ACTION = "action"
    TABLE = "table"
    LIST = "list"
    LOCATION = "location"
    HANDOFF = "handoff"


class ActionKey(str, Enum):
    """Semantic role of an action item"""
    SCHEDULE = "schedule"
    MODIFY = "modify"
    PRICES = "prices"
    CUSTOM = "custom"


EXCLUSIVE_ACTION_KEYS = (ActionKey.SCHEDULE, ActionKey.MODIFY)


class FieldType(str, Enum):
    """Input type of a form field"""
    TEXT = "text"
    TEL = "tel"
    EMAIL = "email"
    DATE = "date"
    SELECT = "select"
    TEXTAREA = "textarea"


class ReminderUnit(str, Enum):
    HOURS = "hours"
    MINUTES = "minutes"


def _values(enum_cls) -> set:
    return {member.value for member in enum_cls}


class _Schema(BaseModel):
    class Config:
        populate_by_name = True


# ────────────────────────────────────────────
# Menu item metadata (one variant per kind)
# ────────────────────────────────────────────

class TableMeta(_Schema):
    """Table shown to the customer: 2-4 columns, up to 10 rows"""
    kind: Literal["table"] = "table"
    columns: List[str] = Field(default_factory=list)
    rows: List[List[str]] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {"table": {"columns": list(self.columns), "rows": [list(r) for r in self.rows]}}


class ListMeta(_Schema):
    """Plain list of options (at least 2)"""
    kind: Literal["list"] = "list"
    options: List[str] = Field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {"list": {"options": list(self.options)}}


class LocationMeta(_Schema):
    """Business address"""
    kind: Literal["location"] = "location"
    address: str = ""

    def to_wire(self) -> Dict[str, Any]:
        return {"location": {"address": self.address}}


class ScheduleService(_Schema):
    """One bookable service attached to the schedule item"""
    service_type: str = Field("", alias="serviceType")
    price: Optional[str] = ""
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("service_type", "price", mode="before")
    @classmethod
    def validate_text(cls, v):
        return "" if v is None else str(v)

    @field_validator("recommendations", mode="before")
    @classmethod
    def validate_recommendations(cls, v):
        return [] if v is None else v


class ScheduleFormField(_Schema):
    """Per-item form field carried alongside the services"""
    key: str
    label: str = ""
    type: str = "text"
    required: bool = False


class ServicesMeta(_Schema):
    """Services offered by the schedule item"""
    kind: Literal["services"] = "services"
    services: List[ScheduleService] = Field(default_factory=list)
    form_fields: List[ScheduleFormField] = Field(default_factory=list, alias="formFields")

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {}
        if self.services:
            wire["services"] = [s.model_dump(by_alias=True) for s in self.services]
        if self.form_fields:
            wire["formFields"] = [f.model_dump(by_alias=True) for f in self.form_fields]
        return wire


ItemMetadata = Annotated[
    Union[TableMeta, ListMeta, LocationMeta, ServicesMeta],
    Field(discriminator="kind"),
]


def _meta_from_wire(kind: Any, meta: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Pick the variant of a stored ``meta`` object that matches the item kind"""
    kind = getattr(kind, "value", kind)
    if kind == ItemKind.TABLE.value and isinstance(meta.get("table"), dict):
        return {"kind": "table", **meta["table"]}
    if kind == ItemKind.LIST.value and isinstance(meta.get("list"), dict):
        return {"kind": "list", **meta["list"]}
    if kind == ItemKind.LOCATION.value and isinstance(meta.get("location"), dict):
        return {"kind": "location", **meta["location"]}
    if meta.get("services") or meta.get("formFields"):
        return {
            "kind": "services",
            "services": meta.get("services") or [],
            "formFields": meta.get("formFields") or [],
        }
    return None


# ────────────────────────────────────────────
# Menu items and form fields
# ────────────────────────────────────────────

class MenuItem(_Schema):
    """One bot menu entry"""
    id: str
    label: str = ""
    kind: ItemKind = Field(ItemKind.ACTION, alias="type")
    action_key: Optional[ActionKey] = Field(None, alias="actionKey")
    fixed: bool = False
    meta: Optional[ItemMetadata] = None

    @model_validator(mode="before")
    @classmethod
    def parse_wire_meta(cls, data):
        """Stored documents nest metadata as {"table": {...}} / {"services": [...]}"""
        if isinstance(data, dict):
            meta = data.get("meta")
            if isinstance(meta, dict) and "kind" not in meta:
                data = dict(data)
                data["meta"] = _meta_from_wire(data.get("type", data.get("kind")), meta)
        return data

    @field_validator("kind", mode="before")
    @classmethod
    def validate_kind(cls, v):
        if v is None:
            return ItemKind.ACTION
        if isinstance(v, str) and v not in _values(ItemKind):
            log.warning(f"⚠️ Unknown menu item type {v!r}, using 'action'")
            return ItemKind.ACTION
        return v

    @field_validator("action_key", mode="before")
    @classmethod
    def validate_action_key(cls, v):
        if isinstance(v, str) and v not in _values(ActionKey):
            log.warning(f"⚠️ Unknown actionKey {v!r}, dropping it")
            return None
        return v or None

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v):
        return str(v)

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"id": self.id, "label": self.label, "type": self.kind.value}
        if self.action_key is not None:
            wire["actionKey"] = self.action_key.value
        if self.fixed:
            wire["fixed"] = True
        if self.meta is not None:
            meta = self.meta.to_wire()
            if meta:
                wire["meta"] = meta
        return wire


class FormField(_Schema):
    """One formulary entry the bot asks the customer for"""
    key: str
    label: str = ""
    type: FieldType = FieldType.TEXT
    required: bool = False
    to_modified: bool = Field(False, alias="toModified")

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v):
        if not v or (isinstance(v, str) and v not in _values(FieldType)):
            return FieldType.TEXT
        return v


# ────────────────────────────────────────────
# Scheduling settings
# ────────────────────────────────────────────

class BusinessHours(_Schema):
    start: str = "09:00"
    end: str = "18:00"


class Reminder(_Schema):
    """Reminder sent ``value`` ``unit`` before an appointment"""
    value: int = 24
    unit: ReminderUnit = ReminderUnit.HOURS

    @field_validator("unit", mode="before")
    @classmethod
    def validate_unit(cls, v):
        if v not in ("hours", "minutes", ReminderUnit.HOURS, ReminderUnit.MINUTES):
            return ReminderUnit.HOURS
        return v

    @field_validator("value", mode="before")
    @classmethod
    def validate_value(cls, v):
        return v or 0


class Reminders(_Schema):
    enabled: bool = False
    client_reminders: List[Reminder] = Field(default_factory=list, alias="clientReminders")
    user_reminders: List[Reminder] = Field(default_factory=list, alias="userReminders")


class BotMessages(_Schema):
    """Confirmation texts the bot sends after each flow"""
    schedule_confirmation: str = Field(DEFAULT_SCHEDULE_CONFIRMATION, alias="scheduleConfirmation")
    modification_confirmation: str = Field(DEFAULT_MODIFICATION_CONFIRMATION, alias="modificationConfirmation")
    cancellation_confirmation: str = Field(DEFAULT_CANCELLATION_CONFIRMATION, alias="cancellationConfirmation")
    order_acknowledgement: str = Field(DEFAULT_ORDER_ACKNOWLEDGEMENT, alias="orderAcknowledgement")

    @model_validator(mode="before")
    @classmethod
    def fill_blanks(cls, data):
        # empty strings in stored documents fall back to the defaults
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v}
        return data


# ────────────────────────────────────────────
# Aggregate root
# ────────────────────────────────────────────

class FlowConfig(_Schema):
    """The whole bot configuration, persisted as ``botSettings`` on the user record"""
    template: TemplateName = TemplateName.CUSTOM
    greeting: str = DEFAULT_GREETING
    schedule_message: str = Field(DEFAULT_SCHEDULE_MESSAGE, alias="scheduleMessage")
    messages: BotMessages = Field(default_factory=BotMessages)
    menu_items: List[MenuItem] = Field(default_factory=list, alias="menuItems")
    form_fields: List[FormField] = Field(default_factory=list, alias="formFields")
    business_hours: BusinessHours = Field(default_factory=BusinessHours, alias="businessHours")
    working_days: List[str] = Field(default_factory=lambda: list(DEFAULT_WORKING_DAYS), alias="workingDays")
    appointment_interval: int = Field(30, alias="appointmentInterval")
    auto_confirm_appointments: bool = Field(False, alias="autoConfirmAppointments")
    reminders: Reminders = Field(default_factory=Reminders)
    version: int = 1

    @field_validator("template", mode="before")
    @classmethod
    def validate_template(cls, v):
        if not v or (isinstance(v, str) and v not in _values(TemplateName)):
            return TemplateName.CUSTOM
        return v

    @field_validator("working_days", mode="before")
    @classmethod
    def validate_working_days(cls, v):
        if v is None:
            return list(DEFAULT_WORKING_DAYS)
        days = []
        for day in v:
            day = str(day).lower()
            if day in WEEKDAYS and day not in days:
                days.append(day)
        return days

    @field_validator("messages", "business_hours", "reminders", mode="before")
    @classmethod
    def none_to_default(cls, v):
        return {} if v is None else v

    @field_validator("menu_items", "form_fields", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return [] if v is None else v

    def to_wire(self) -> Dict[str, Any]:
        """Document in the shape the backend stores"""
        wire = self.model_dump(by_alias=True, mode="json", exclude={"menu_items"})
        wire["menuItems"] = [item.to_wire() for item in self.menu_items]
        return wire
