# botdesk/services/flow_config_service.py
"""
Bot flow editor - holds the draft ``botSettings`` document and enforces its rules.

RULES:
- At most 5 menu items and 6 form fields
- Fixed items (template "Agendar cita" / "Modificar / Cancelar") are never edited or removed
- actionKey ``schedule`` and ``modify`` are each held by at most one item
- Exactly one form field carries ``toModified`` once any field exists
- Form field keys are unique; type changes and well-known labels re-derive them
- Every rejected mutation leaves the draft untouched
"""
from __future__ import annotations

import logging
import re
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from botdesk.core.exceptions import (
    ApiError,
    LabelTooLong,
    LimitExceeded,
    PersistenceFailed,
    SessionExpired,
    ValidationFailed,
    Violation,
)
from botdesk.schemas.flow_config import (
    DEFAULT_GREETING,
    DEFAULT_SCHEDULE_MESSAGE,
    EXCLUSIVE_ACTION_KEYS,
    WEEKDAYS,
    ActionKey,
    BotMessages,
    BusinessHours,
    FieldType,
    FlowConfig,
    FormField,
    ItemKind,
    ListMeta,
    LocationMeta,
    MenuItem,
    Reminder,
    ReminderUnit,
    ScheduleService,
    ServicesMeta,
    TableMeta,
    TemplateName,
)
from botdesk.services.flow_templates import (
    MODIFY_ITEM_ID,
    MODIFY_LABEL,
    SCHEDULE_ITEM_ID,
    SCHEDULE_LABEL,
    build_preset,
    uses_fixed_items,
)

log = logging.getLogger("botdesk.flow_config")

MAX_MENU_ITEMS = 5
MAX_FORM_FIELDS = 6
MAX_MENU_LABEL = 24
MAX_FIELD_LABEL = 40
MAX_SERVICE_TYPE = 24
MAX_MESSAGE_LENGTH = 320
MIN_TABLE_COLUMNS = 2
MAX_TABLE_COLUMNS = 4
MIN_TABLE_ROWS = 1
MAX_TABLE_ROWS = 10
MIN_LIST_OPTIONS = 2
MAX_REMINDER_VALUE = 60

# Labels the bot recognises, mapped to the canonical field key
COMMON_FIELD_KEYS = {
    'nombre': 'name',
    'teléfono': 'phone',
    'email': 'email',
    'correo': 'email',
    'fecha': 'date',
    'fecha de nacimiento': 'birthdate',
    'dirección': 'address',
    'ciudad': 'city',
    'país': 'country',
    'código postal': 'zipcode',
    'mensaje': 'message',
    'comentario': 'comment',
    'descripción': 'description',
    'servicio': 'service',
    'producto': 'product',
    'cantidad': 'quantity',
    'precio': 'price',
}

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

_MESSAGE_FIELDS = {
    'scheduleConfirmation': 'schedule_confirmation',
    'modificationConfirmation': 'modification_confirmation',
    'cancellationConfirmation': 'cancellation_confirmation',
    'orderAcknowledgement': 'order_acknowledgement',
}


def generate_unique_key(base: str, existing_keys: Iterable[str], exclude_key: Optional[str] = None) -> str:
    """
    Return ``base`` or the first of ``base1``, ``base2``, ... not already taken.

    ``exclude_key`` is ignored when checking collisions (the field's own key).
    """
    taken = {key for key in existing_keys if key != exclude_key}
    new_key = base
    counter = 1
    while new_key in taken:
        new_key = f"{base}{counter}"
        counter += 1
    return new_key


def _new_item_id() -> str:
    return uuid.uuid4().hex[:12]


class FlowConfigModel:
    """Editable bot flow draft"""

    def __init__(
        self,
        config: Optional[FlowConfig] = None,
        business_name: Optional[str] = None,
        business_address: Optional[str] = None,
        id_factory: Callable[[], str] = _new_item_id,
    ):
        """
        Args:
            config: Persisted document to start from (defaults when omitted)
            business_name: Interpolated into template greetings
            business_address: Prefills location items
            id_factory: Generates ids for new menu items
        """
        self.business_name = business_name
        self.business_address = business_address
        self._new_id = id_factory
        self.menu_item_errors: Dict[str, str] = {}
        self.form_field_errors: Dict[str, str] = {}
        self.service_errors: Dict[int, str] = {}
        self.draft = FlowConfig()
        self._baseline = FlowConfig()
        self.load(config)

    @classmethod
    def from_user(cls, user: Dict[str, Any], **kwargs) -> "FlowConfigModel":
        """Build the editor from a ``GET /auth/user/{id}`` record"""
        return cls(
            config=user.get("botSettings"),
            business_name=user.get("businessName"),
            business_address=user.get("address"),
            **kwargs,
        )

    # ────────────────────────────────────────────
    # Loading
    # ────────────────────────────────────────────

    def load(self, config: Union[FlowConfig, Dict[str, Any], None], business_name: Optional[str] = None) -> FlowConfig:
        """Replace the draft with a persisted document, repairing invariants"""
        if business_name is not None:
            self.business_name = business_name
        if config is None:
            draft = FlowConfig()
        elif isinstance(config, FlowConfig):
            draft = config.model_copy(deep=True)
        else:
            draft = FlowConfig.model_validate(config)

        self._pin_fixed_items(draft)
        self._repair_action_keys(draft.menu_items)
        self._repair_form_fields(draft.form_fields)

        self.draft = draft
        self._baseline = draft.model_copy(deep=True)
        self._clear_errors()
        log.debug(f"Loaded flow config (template={draft.template.value}, "
                  f"items={len(draft.menu_items)}, fields={len(draft.form_fields)})")
        return self.draft

    @staticmethod
    def _pin_fixed_items(draft: FlowConfig) -> None:
        if not uses_fixed_items(draft.template):
            return
        items = draft.menu_items
        if items and (items[0].label == SCHEDULE_LABEL or items[0].id == SCHEDULE_ITEM_ID):
            items[0].fixed = True
            items[0].label = SCHEDULE_LABEL
        if len(items) > 1:
            label = items[1].label
            if 'Modificar' in label or 'Cancelar' in label or items[1].id == MODIFY_ITEM_ID:
                items[1].fixed = True
                items[1].label = MODIFY_LABEL

    @staticmethod
    def _repair_action_keys(items: List[MenuItem]) -> None:
        seen = set()
        for item in items:
            if item.action_key in EXCLUSIVE_ACTION_KEYS:
                if item.action_key in seen:
                    log.warning(f"⚠️ Duplicate actionKey {item.action_key.value} on item {item.id}, clearing")
                    item.action_key = None
                else:
                    seen.add(item.action_key)

    @staticmethod
    def _repair_form_fields(fields: List[FormField]) -> None:
        keys: List[str] = []
        for field in fields:
            if not field.key or field.key in keys:
                field.key = generate_unique_key(field.key or field.type.value, keys)
            keys.append(field.key)
        if not fields:
            return
        selected = [f for f in fields if f.to_modified]
        if not selected:
            fields[0].to_modified = True
        for extra in selected[1:]:
            extra.to_modified = False

    def _clear_errors(self) -> None:
        self.menu_item_errors.clear()
        self.form_field_errors.clear()
        self.service_errors.clear()

    # ────────────────────────────────────────────
    # Accessors
    # ────────────────────────────────────────────

    @property
    def template(self) -> TemplateName:
        return self.draft.template

    @property
    def menu_items(self) -> List[MenuItem]:
        return self.draft.menu_items

    @property
    def form_fields(self) -> List[FormField]:
        return self.draft.form_fields

    def get_menu_item(self, item_id: str) -> Optional[MenuItem]:
        return next((item for item in self.draft.menu_items if item.id == item_id), None)

    def get_form_field(self, key: str) -> Optional[FormField]:
        return next((field for field in self.draft.form_fields if field.key == key), None)

    def is_item_fixed(self, item: Optional[MenuItem]) -> bool:
        if item is None:
            return False
        if item.fixed:
            return True
        return uses_fixed_items(self.draft.template) and item.label in (SCHEDULE_LABEL, MODIFY_LABEL)

    def is_dirty(self) -> bool:
        return self.draft.to_wire() != self._baseline.to_wire()

    # ────────────────────────────────────────────
    # Templates
    # ────────────────────────────────────────────

    def select_template(self, template: Union[TemplateName, str]) -> FlowConfig:
        """Replace greeting, menu, form and schedule message with a preset"""
        preset = build_preset(template, self.business_name)
        try:
            self.draft.template = TemplateName(template)
        except ValueError:
            self.draft.template = TemplateName.CUSTOM
        self.draft.greeting = preset.greeting
        self.draft.menu_items = preset.menu_items
        self.draft.form_fields = preset.form_fields
        self.draft.schedule_message = preset.schedule_message
        self._clear_errors()
        log.info(f"📋 Template selected: {self.draft.template.value}")
        return self.draft

    # ────────────────────────────────────────────
    # Menu items
    # ────────────────────────────────────────────

    def add_menu_item(self) -> MenuItem:
        if len(self.draft.menu_items) >= MAX_MENU_ITEMS:
            log.warning(f"⚠️ Menu item limit reached ({MAX_MENU_ITEMS})")
            raise LimitExceeded("menu items", MAX_MENU_ITEMS)
        item = MenuItem(id=self._new_id(), label="", kind=ItemKind.ACTION)
        self.draft.menu_items.append(item)
        return item

    def remove_menu_item(self, item_id: str) -> bool:
        item = self.get_menu_item(item_id)
        if item is None or self.is_item_fixed(item):
            return False
        self.draft.menu_items.remove(item)
        self.menu_item_errors.pop(item_id, None)
        return True

    def update_menu_item(self, item_id: str, field: str, value: Any) -> Optional[MenuItem]:
        """
        Update one attribute of a non-fixed menu item.

        Args:
            item_id: Target item
            field: ``label``, ``kind``/``type``, ``action_key``/``actionKey`` or ``meta``
            value: New value

        Returns:
            The updated item, or None when the item is missing or fixed

        Raises:
            LabelTooLong: label longer than 24 characters (draft unchanged)
            ValueError, LimitExceeded: ``meta`` of the wrong shape or out of bounds (draft unchanged)
        """
        item = self.get_menu_item(item_id)
        if item is None or self.is_item_fixed(item):
            return None

        if field == 'label':
            value = value or ""
            if len(value) > MAX_MENU_LABEL:
                error = LabelTooLong(item_id, MAX_MENU_LABEL)
                self.menu_item_errors[item_id] = str(error)
                raise error
            self.menu_item_errors.pop(item_id, None)
            item.label = value

        elif field in ('action_key', 'actionKey'):
            action_key = ActionKey(value) if value else None
            if action_key in EXCLUSIVE_ACTION_KEYS:
                for other in self.draft.menu_items:
                    if other is not item and other.action_key == action_key:
                        other.action_key = None
            item.action_key = action_key

        elif field in ('kind', 'type'):
            kind = ItemKind(value)
            item.kind = kind
            if item.meta is not None and item.meta.kind in ('table', 'list', 'location') and item.meta.kind != kind.value:
                item.meta = None
            if kind == ItemKind.LOCATION and item.meta is None and self.business_address:
                item.meta = LocationMeta(address=self.business_address)

        elif field == 'meta':
            item.meta = self._validated_meta(item, value)

        else:
            raise ValueError(f"Unknown menu item field: {field}")

        return item

    def _validated_meta(self, item: MenuItem, value: Any):
        """
        Parse replacement metadata (model or stored ``{"table": {...}}`` shape) and check its bounds.

        Raises:
            ValueError: shape does not match the item type, or ragged table rows
            LimitExceeded: table or list size out of range
            LabelTooLong: service type longer than 24 characters
        """
        if value is None:
            return None
        if isinstance(value, dict):
            value = MenuItem.model_validate({"id": item.id, "type": item.kind.value, "meta": value}).meta
            if value is None:
                raise ValueError(f"Metadata does not match item type {item.kind.value}")
        elif not isinstance(value, (TableMeta, ListMeta, LocationMeta, ServicesMeta)):
            raise ValueError(f"Unsupported metadata: {type(value).__name__}")

        meta = value.model_copy(deep=True)
        if not isinstance(meta, ServicesMeta) and meta.kind != item.kind.value:
            raise ValueError(f"Metadata {meta.kind} does not match item type {item.kind.value}")

        if isinstance(meta, TableMeta):
            if not MIN_TABLE_COLUMNS <= len(meta.columns) <= MAX_TABLE_COLUMNS:
                raise LimitExceeded("table columns", MAX_TABLE_COLUMNS,
                                    f"Tables need {MIN_TABLE_COLUMNS}-{MAX_TABLE_COLUMNS} columns")
            if len(meta.rows) > MAX_TABLE_ROWS:
                raise LimitExceeded("table rows", MAX_TABLE_ROWS)
            if any(len(row) != len(meta.columns) for row in meta.rows):
                raise ValueError("Every table row needs one cell per column")
        elif isinstance(meta, ListMeta):
            if len(meta.options) < MIN_LIST_OPTIONS:
                raise LimitExceeded("list options", MIN_LIST_OPTIONS,
                                    f"Lists need at least {MIN_LIST_OPTIONS} options")
        elif isinstance(meta, ServicesMeta):
            for index, service in enumerate(meta.services):
                if len(service.service_type) > MAX_SERVICE_TYPE:
                    raise LabelTooLong(str(index), MAX_SERVICE_TYPE)
        return meta

    # ────────────────────────────────────────────
    # Table / list / location editors
    # ────────────────────────────────────────────

    def _editable_item(self, item_id: str, kind: ItemKind) -> Optional[MenuItem]:
        item = self.get_menu_item(item_id)
        if item is None or self.is_item_fixed(item) or item.kind != kind:
            return None
        return item

    def _table(self, item_id: str) -> Optional[TableMeta]:
        item = self._editable_item(item_id, ItemKind.TABLE)
        if item is None:
            return None
        if not isinstance(item.meta, TableMeta):
            item.meta = TableMeta()
        return item.meta

    def add_table_column(self, item_id: str) -> bool:
        table = self._table(item_id)
        if table is None or len(table.columns) >= MAX_TABLE_COLUMNS:
            return False
        table.columns.append(f"Columna {len(table.columns) + 1}")
        for row in table.rows:
            row.append("")
        return True

    def remove_table_column(self, item_id: str, index: int) -> bool:
        table = self._table(item_id)
        if table is None or len(table.columns) <= MIN_TABLE_COLUMNS or not 0 <= index < len(table.columns):
            return False
        del table.columns[index]
        for row in table.rows:
            if index < len(row):
                del row[index]
        return True

    def update_table_column(self, item_id: str, index: int, value: str) -> bool:
        table = self._table(item_id)
        if table is None or not 0 <= index < len(table.columns):
            return False
        table.columns[index] = value
        return True

    def add_table_row(self, item_id: str) -> bool:
        table = self._table(item_id)
        if table is None or len(table.rows) >= MAX_TABLE_ROWS:
            return False
        table.rows.append([""] * len(table.columns))
        return True

    def remove_table_row(self, item_id: str, index: int) -> bool:
        table = self._table(item_id)
        if table is None or len(table.rows) <= MIN_TABLE_ROWS or not 0 <= index < len(table.rows):
            return False
        del table.rows[index]
        return True

    def update_table_cell(self, item_id: str, row: int, column: int, value: str) -> bool:
        table = self._table(item_id)
        if table is None or not 0 <= row < len(table.rows) or not 0 <= column < len(table.rows[row]):
            return False
        table.rows[row][column] = value
        return True

    def _list(self, item_id: str) -> Optional[ListMeta]:
        item = self._editable_item(item_id, ItemKind.LIST)
        if item is None:
            return None
        if not isinstance(item.meta, ListMeta):
            item.meta = ListMeta()
        return item.meta

    def add_list_option(self, item_id: str) -> bool:
        options = self._list(item_id)
        if options is None:
            return False
        options.options.append("")
        return True

    def remove_list_option(self, item_id: str, index: int) -> bool:
        options = self._list(item_id)
        if options is None or len(options.options) <= MIN_LIST_OPTIONS or not 0 <= index < len(options.options):
            return False
        del options.options[index]
        return True

    def update_list_option(self, item_id: str, index: int, value: str) -> bool:
        options = self._list(item_id)
        if options is None or not 0 <= index < len(options.options):
            return False
        options.options[index] = value
        return True

    def set_location_address(self, item_id: str, address: str) -> bool:
        item = self._editable_item(item_id, ItemKind.LOCATION)
        if item is None:
            return False
        item.meta = LocationMeta(address=address or "")
        return True

    # ────────────────────────────────────────────
    # Scheduling services (on the schedule item)
    # ────────────────────────────────────────────

    def schedule_item(self) -> Optional[MenuItem]:
        """Item holding actionKey=schedule, else the first item"""
        items = self.draft.menu_items
        return next((i for i in items if i.action_key == ActionKey.SCHEDULE), items[0] if items else None)

    def _services(self, create: bool = False) -> Optional[ServicesMeta]:
        item = self.schedule_item()
        if item is None:
            return None
        if isinstance(item.meta, ServicesMeta):
            return item.meta
        if item.meta is None and create:
            item.meta = ServicesMeta()
            return item.meta
        return None

    @property
    def services(self) -> List[ScheduleService]:
        meta = self._services()
        return meta.services if meta else []

    def add_service(self) -> Optional[ScheduleService]:
        meta = self._services(create=True)
        if meta is None:
            return None
        service = ScheduleService(service_type="", price="", recommendations=[""])
        meta.services.append(service)
        return service

    def remove_service(self, index: int) -> bool:
        meta = self._services()
        if meta is None or len(meta.services) <= 1 or not 0 <= index < len(meta.services):
            return False
        del meta.services[index]
        # errors follow their services down one slot
        shifted = {(i - 1 if i > index else i): msg for i, msg in self.service_errors.items() if i != index}
        self.service_errors.clear()
        self.service_errors.update(shifted)
        return True

    def update_service(self, index: int, field: str, value: Any) -> Optional[ScheduleService]:
        """
        Update ``service_type``/``serviceType``, ``price`` or ``recommendations``.

        Raises:
            LabelTooLong: service type longer than 24 characters
        """
        meta = self._services()
        if meta is None or not 0 <= index < len(meta.services):
            return None
        service = meta.services[index]

        if field in ('service_type', 'serviceType'):
            value = value or ""
            if len(value) > MAX_SERVICE_TYPE:
                error = LabelTooLong(str(index), MAX_SERVICE_TYPE)
                self.service_errors[index] = str(error)
                raise error
            self.service_errors.pop(index, None)
            service.service_type = value
        elif field == 'price':
            service.price = "" if value is None else str(value)
        elif field == 'recommendations':
            service.recommendations = list(value or [])
        else:
            raise ValueError(f"Unknown service field: {field}")
        return service

    def add_recommendation(self, service_index: int) -> bool:
        meta = self._services()
        if meta is None or not 0 <= service_index < len(meta.services):
            return False
        meta.services[service_index].recommendations.append("")
        return True

    def remove_recommendation(self, service_index: int, index: int) -> bool:
        meta = self._services()
        if meta is None or not 0 <= service_index < len(meta.services):
            return False
        recommendations = meta.services[service_index].recommendations
        if len(recommendations) <= 1 or not 0 <= index < len(recommendations):
            return False
        del recommendations[index]
        return True

    def update_recommendation(self, service_index: int, index: int, value: str) -> bool:
        meta = self._services()
        if meta is None or not 0 <= service_index < len(meta.services):
            return False
        recommendations = meta.services[service_index].recommendations
        if not 0 <= index < len(recommendations):
            return False
        recommendations[index] = value
        return True

    # ────────────────────────────────────────────
    # Form fields
    # ────────────────────────────────────────────

    def _field_keys(self) -> List[str]:
        return [f.key for f in self.draft.form_fields]

    def add_form_field(self) -> FormField:
        fields = self.draft.form_fields
        if len(fields) >= MAX_FORM_FIELDS:
            log.warning(f"⚠️ Form field limit reached ({MAX_FORM_FIELDS})")
            raise LimitExceeded("form fields", MAX_FORM_FIELDS)
        field = FormField(
            key=generate_unique_key(FieldType.TEXT.value, self._field_keys()),
            label="",
            type=FieldType.TEXT,
            required=False,
            to_modified=not fields,
        )
        fields.append(field)
        return field

    def remove_form_field(self, key: str) -> bool:
        field = self.get_form_field(key)
        if field is None:
            return False
        self.draft.form_fields.remove(field)
        self.form_field_errors.pop(key, None)
        # the lookup field must survive removals
        if field.to_modified and self.draft.form_fields:
            self.draft.form_fields[0].to_modified = True
        return True

    def update_form_field(self, key: str, field: str, value: Any) -> Optional[FormField]:
        """
        Update one attribute of a form field.

        Args:
            key: Current key of the field
            field: ``label``, ``type``, ``required`` or ``to_modified``/``toModified``
            value: New value

        Returns:
            The updated field (its key may have changed), or None for a no-op

        Raises:
            LabelTooLong: label longer than 40 characters (draft unchanged)
        """
        target = self.get_form_field(key)
        if target is None:
            return None

        if field in ('to_modified', 'toModified'):
            if not value:
                # cleared only by selecting another field
                return None
            for other in self.draft.form_fields:
                other.to_modified = other is target
            return target

        if field == 'label':
            value = value or ""
            if len(value) > MAX_FIELD_LABEL:
                error = LabelTooLong(key, MAX_FIELD_LABEL)
                self.form_field_errors[key] = str(error)
                raise error
            self.form_field_errors.pop(key, None)
            target.label = value
            common_key = COMMON_FIELD_KEYS.get(value.strip().lower())
            if common_key:
                self._rekey(target, generate_unique_key(common_key, self._field_keys(), exclude_key=key))

        elif field == 'type':
            field_type = FieldType(value)
            target.type = field_type
            self._rekey(target, generate_unique_key(field_type.value, self._field_keys(), exclude_key=key))

        elif field == 'required':
            target.required = bool(value)

        else:
            raise ValueError(f"Unknown form field attribute: {field}")

        return target

    def _rekey(self, target: FormField, new_key: str) -> None:
        if new_key == target.key:
            return
        if target.key in self.form_field_errors:
            self.form_field_errors[new_key] = self.form_field_errors.pop(target.key)
        target.key = new_key

    # ────────────────────────────────────────────
    # Bot messages
    # ────────────────────────────────────────────

    @staticmethod
    def _check_message(target: str, text: str) -> str:
        text = text or ""
        if len(text) > MAX_MESSAGE_LENGTH:
            raise LabelTooLong(target, MAX_MESSAGE_LENGTH)
        return text

    def set_greeting(self, text: str) -> None:
        self.draft.greeting = self._check_message('greeting', text)

    def set_schedule_message(self, text: str) -> None:
        self.draft.schedule_message = self._check_message('scheduleMessage', text)

    def set_message(self, name: str, text: str) -> None:
        """Set one of the confirmation texts (camelCase or snake_case name)"""
        attr = _MESSAGE_FIELDS.get(name, name)
        if attr not in BotMessages.model_fields:
            raise ValueError(f"Unknown bot message: {name}")
        setattr(self.draft.messages, attr, self._check_message(name, text))

    # ────────────────────────────────────────────
    # Scheduling settings
    # ────────────────────────────────────────────

    def set_business_hours(self, start: str, end: str) -> None:
        if not _HHMM.match(start or "") or not _HHMM.match(end or ""):
            raise ValueError("Business hours must use HH:MM")
        if start >= end:
            raise ValueError("Business hours must start before they end")
        self.draft.business_hours = BusinessHours(start=start, end=end)

    def toggle_working_day(self, day: str) -> List[str]:
        day = (day or "").lower()
        if day not in WEEKDAYS:
            raise ValueError(f"Unknown weekday: {day}")
        days = self.draft.working_days
        if day in days:
            days.remove(day)
        else:
            days.append(day)
        return days

    def set_appointment_interval(self, minutes: int) -> None:
        if int(minutes) <= 0:
            raise ValueError("Appointment interval must be positive")
        self.draft.appointment_interval = int(minutes)

    def set_auto_confirm(self, enabled: bool) -> None:
        self.draft.auto_confirm_appointments = bool(enabled)

    def set_reminders_enabled(self, enabled: bool) -> None:
        self.draft.reminders.enabled = bool(enabled)

    def _reminder_list(self, audience: str) -> List[Reminder]:
        if audience == 'client':
            return self.draft.reminders.client_reminders
        if audience == 'user':
            return self.draft.reminders.user_reminders
        raise ValueError(f"Unknown reminder audience: {audience}")

    def add_reminder(self, audience: str) -> Reminder:
        reminder = Reminder(value=24, unit=ReminderUnit.HOURS)
        self._reminder_list(audience).append(reminder)
        return reminder

    def update_reminder(self, audience: str, index: int, value: Optional[int] = None,
                        unit: Union[ReminderUnit, str, None] = None) -> Reminder:
        reminders = self._reminder_list(audience)
        if not 0 <= index < len(reminders):
            raise IndexError(f"No {audience} reminder at {index}")
        if value is not None and not 0 <= int(value) <= MAX_REMINDER_VALUE:
            raise ValueError(f"Reminder value must be between 0 and {MAX_REMINDER_VALUE}")
        unit = ReminderUnit(unit) if unit is not None else None
        reminder = reminders[index]
        if value is not None:
            reminder.value = int(value)
        if unit is not None:
            reminder.unit = unit
        return reminder

    def remove_reminder(self, audience: str, index: int) -> bool:
        reminders = self._reminder_list(audience)
        if not 0 <= index < len(reminders):
            return False
        del reminders[index]
        return True

    # ────────────────────────────────────────────
    # Validation / cleaning / persistence
    # ────────────────────────────────────────────

    def collect_violations(self) -> List[Violation]:
        violations: List[Violation] = []
        for item in self.draft.menu_items:
            if not item.fixed and len(item.label) > MAX_MENU_LABEL:
                violations.append(Violation('menu_item', item.id, f"Label exceeds {MAX_MENU_LABEL} characters"))
            if isinstance(item.meta, ServicesMeta):
                for index, service in enumerate(item.meta.services):
                    if len(service.service_type) > MAX_SERVICE_TYPE:
                        violations.append(Violation('service', str(index),
                                                    f"Service type exceeds {MAX_SERVICE_TYPE} characters"))
        for field in self.draft.form_fields:
            if len(field.label) > MAX_FIELD_LABEL:
                violations.append(Violation('form_field', field.key, f"Label exceeds {MAX_FIELD_LABEL} characters"))
        texts = {'greeting': self.draft.greeting, 'scheduleMessage': self.draft.schedule_message}
        texts.update(self.draft.messages.model_dump(by_alias=True))
        for name, text in texts.items():
            if len(text or "") > MAX_MESSAGE_LENGTH:
                violations.append(Violation('message', name, f"Text exceeds {MAX_MESSAGE_LENGTH} characters"))
        return violations

    def validate_for_save(self) -> None:
        """Raise ValidationFailed if any label is over its limit"""
        violations = self.collect_violations()
        if violations:
            log.warning(f"⚠️ Save blocked: {len(violations)} violation(s)")
            raise ValidationFailed(violations)

    @staticmethod
    def _clean_meta(item: MenuItem):
        meta = item.meta
        if isinstance(meta, ServicesMeta):
            if meta.services or meta.form_fields:
                return meta.model_copy(deep=True)
            return None
        if item.fixed or meta is None or meta.kind != item.kind.value:
            return None
        if isinstance(meta, TableMeta):
            if len(meta.columns) >= MIN_TABLE_COLUMNS and len(meta.rows) >= MIN_TABLE_ROWS:
                return meta.model_copy(deep=True)
        elif isinstance(meta, ListMeta):
            if len(meta.options) >= MIN_LIST_OPTIONS:
                return meta.model_copy(deep=True)
        elif isinstance(meta, LocationMeta):
            if meta.address.strip():
                return meta.model_copy(deep=True)
        return None

    def build_cleaned_document(self) -> FlowConfig:
        """Submit-ready copy of the draft with empty metadata stripped"""
        document = self.draft.model_copy(deep=True)
        cleaned_items = []
        for item in self.draft.menu_items:
            cleaned_items.append(MenuItem(
                id=item.id or self._new_id(),
                label=item.label or "",
                kind=item.kind,
                action_key=item.action_key,
                fixed=item.fixed,
                meta=self._clean_meta(item),
            ))
        document.menu_items = cleaned_items
        document.greeting = self.draft.greeting or DEFAULT_GREETING
        document.schedule_message = self.draft.schedule_message or DEFAULT_SCHEDULE_MESSAGE
        return document

    def save(self, api_client) -> FlowConfig:
        """
        Validate, clean and PATCH the document.

        On success the cleaned document becomes the draft and the new baseline.

        Raises:
            ValidationFailed: labels over limits (nothing sent)
            PersistenceFailed: PATCH failed or backend answered success=false
            SessionExpired: backend rejected the token
        """
        self.validate_for_save()
        document = self.build_cleaned_document()

        try:
            response = api_client.update_bot_settings(document.to_wire())
        except SessionExpired:
            raise
        except ApiError as e:
            log.error(f"❌ Failed to save bot settings: {e}")
            raise PersistenceFailed(str(e), status_code=e.status_code) from e

        if not response.get("success"):
            message = response.get("message") or "Error saving bot settings"
            log.error(f"❌ Backend rejected bot settings: {message}")
            raise PersistenceFailed(message)

        self.draft = document
        self._baseline = document.model_copy(deep=True)
        log.info("✅ Bot settings saved")
        return document
