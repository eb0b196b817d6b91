# botdesk/services/flow_templates.py
"""
Business template presets for the bot flow editor.

Appointment-based templates (consultorio, barberia) open with two fixed items,
"Agendar cita" and "Modificar / Cancelar", which hold the schedule and modify
actions and cannot be edited or removed.
"""
from typing import Dict, List, NamedTuple, Optional, Union

from botdesk.schemas.flow_config import (
    DEFAULT_GREETING,
    DEFAULT_SCHEDULE_MESSAGE,
    FormField,
    MenuItem,
    TemplateName,
)

SCHEDULE_ITEM_ID = "agendar-cita-fixed"
MODIFY_ITEM_ID = "modificar-cita-fixed"
SCHEDULE_LABEL = "Agendar cita"
MODIFY_LABEL = "Modificar / Cancelar"

APPOINTMENT_TEMPLATES = (TemplateName.CONSULTORIO, TemplateName.BARBERIA)

_FIXED_ITEMS = [
    {"id": SCHEDULE_ITEM_ID, "label": SCHEDULE_LABEL, "type": "action", "actionKey": "schedule", "fixed": True},
    {"id": MODIFY_ITEM_ID, "label": MODIFY_LABEL, "type": "action", "actionKey": "modify", "fixed": True},
]

_PRESETS: Dict[TemplateName, dict] = {
    TemplateName.CONSULTORIO: {
        "greeting": "Hola, soy el asistente virtual de {business}. ¿En qué puedo ayudarte hoy?",
        "menuItems": _FIXED_ITEMS + [
            {"id": "3", "label": "Información de servicios", "type": "action", "actionKey": "prices"},
            {"id": "4", "label": "Ubicación y horarios", "type": "location"},
        ],
        "formFields": [
            {"key": "name", "label": "Nombre completo", "type": "text", "required": True, "toModified": True},
            {"key": "phone", "label": "Teléfono", "type": "tel", "required": True, "toModified": False},
            {"key": "date", "label": "Fecha preferida", "type": "date", "required": True, "toModified": False},
        ],
    },
    TemplateName.BARBERIA: {
        "greeting": "¡Hola! Bienvenido a {business}. ¿Qué servicio necesitas hoy?",
        "menuItems": _FIXED_ITEMS + [
            {"id": "3", "label": "Corte de cabello", "type": "action"},
            {"id": "4", "label": "Barba y bigote", "type": "action"},
            {"id": "5", "label": "Paquetes completos", "type": "action", "actionKey": "prices"},
        ],
        "formFields": [
            {"key": "name", "label": "Nombre", "type": "text", "required": True, "toModified": True},
            {"key": "phone", "label": "Teléfono", "type": "tel", "required": True, "toModified": False},
            {"key": "service", "label": "Servicio", "type": "select", "required": True, "toModified": False},
        ],
    },
    TemplateName.SERVICIOS: {
        "greeting": "Hola, soy el asistente de {business}. ¿Cómo puedo ayudarte?",
        "menuItems": [
            {"id": "1", "label": "Solicitar servicio", "type": "action", "actionKey": "schedule"},
            {"id": "2", "label": "Cotización", "type": "action", "actionKey": "prices"},
            {"id": "3", "label": "Soporte técnico", "type": "action", "actionKey": "custom"},
        ],
        "formFields": [
            {"key": "name", "label": "Nombre", "type": "text", "required": True, "toModified": True},
            {"key": "phone", "label": "Teléfono", "type": "tel", "required": True, "toModified": False},
            {"key": "description", "label": "Descripción del servicio", "type": "textarea", "required": True, "toModified": False},
        ],
    },
    TemplateName.CUSTOM: {
        "greeting": DEFAULT_GREETING,
        "menuItems": [],
        "formFields": [],
    },
}


class TemplatePreset(NamedTuple):
    greeting: str
    menu_items: List[MenuItem]
    form_fields: List[FormField]
    schedule_message: str


def build_preset(template: Union[TemplateName, str], business_name: Optional[str] = None) -> TemplatePreset:
    """
    Fresh copy of a template's greeting, menu and form.

    Unknown template names fall back to ``custom``.
    """
    try:
        template = TemplateName(template)
    except ValueError:
        template = TemplateName.CUSTOM
    preset = _PRESETS[template]
    greeting = preset["greeting"].format(business=business_name or "tu negocio")
    return TemplatePreset(
        greeting=greeting,
        menu_items=[MenuItem.model_validate(item) for item in preset["menuItems"]],
        form_fields=[FormField.model_validate(field) for field in preset["formFields"]],
        schedule_message=DEFAULT_SCHEDULE_MESSAGE,
    )


def uses_fixed_items(template: Union[TemplateName, str]) -> bool:
    """Appointment templates pin the schedule/modify items at positions 0 and 1"""
    return template in APPOINTMENT_TEMPLATES
