"""Message templates with ``{{variable}}`` placeholders."""

import re

from ..errors import ValidationError
from ..logging_config import get_logger
from ..models import MessageCategory, MessageTemplate
from ..storage import IStorage

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def _template(index: int, name: str, content: str, category: MessageCategory) -> MessageTemplate:
    return MessageTemplate(
        id=f"template-{index}",
        name=name,
        content=content,
        category=category,
        variables=template_variables(content),
    )


def template_variables(content: str) -> list[str]:
    """Placeholder names in order of first appearance."""
    return list(dict.fromkeys(_PLACEHOLDER.findall(content)))


def render_template(template: MessageTemplate, values: dict[str, str]) -> str:
    missing = [name for name in template_variables(template.content) if name not in values]
    if missing:
        raise ValidationError(
            f"Missing template variables: {', '.join(missing)}",
            details={"template_id": template.id, "missing": missing},
        )
    return _PLACEHOLDER.sub(lambda m: str(values[m.group(1)]), template.content)


DEFAULT_TEMPLATES = [
    _template(
        1,
        "Welcome Message",
        "Welcome {{recipientName}}! We are glad to have you here.",
        MessageCategory.GENERAL,
    ),
    _template(
        2,
        "Attendance Reminder",
        "Dear {{recipientName}}, this is a reminder about your attendance. "
        "Please ensure regular attendance.",
        MessageCategory.ATTENDANCE_ALERT,
    ),
    _template(
        3,
        "Schedule Change Notice",
        "Hello {{recipientName}}, please note that the schedule for {{day}} has been "
        "changed. Check the updated schedule.",
        MessageCategory.SCHEDULE_CHANGE,
    ),
    _template(
        4,
        "General Announcement",
        "Dear {{recipientName}}, we would like to inform you about an important "
        "announcement.",
        MessageCategory.ANNOUNCEMENT,
    ),
    _template(
        5,
        "Urgent Notice",
        "URGENT: {{recipientName}}, please contact the office immediately regarding "
        "an important matter.",
        MessageCategory.URGENT,
    ),
    _template(
        6,
        "Meeting Request",
        "Dear {{recipientName}}, we would like to schedule a meeting with you on "
        "{{date}} at {{time}}.",
        MessageCategory.ADMINISTRATIVE,
    ),
    _template(
        7,
        "Document Request",
        "Hello {{recipientName}}, please submit the required documents by {{date}}.",
        MessageCategory.ADMINISTRATIVE,
    ),
    _template(
        8,
        "Exam Reminder",
        "Dear {{recipientName}}, this is a reminder that your exam is scheduled for "
        "{{date}}. Please prepare accordingly.",
        MessageCategory.ANNOUNCEMENT,
    ),
    _template(
        9,
        "Holiday Notice",
        "Dear {{recipientName}}, please note that the office will be closed on "
        "{{date}} for {{reason}}.",
        MessageCategory.ANNOUNCEMENT,
    ),
    _template(
        10,
        "Follow-up Message",
        "Hello {{recipientName}}, following up on our previous conversation. "
        "Please let us know if you need any assistance.",
        MessageCategory.GENERAL,
    ),
    _template(
        11,
        "Thank You Message",
        "Dear {{recipientName}}, thank you for your cooperation and support.",
        MessageCategory.GENERAL,
    ),
    _template(
        12,
        "Absence Follow-up",
        "Dear {{recipientName}}, we noticed your absence on {{date}}. "
        "Please provide a valid reason or medical certificate.",
        MessageCategory.ATTENDANCE_ALERT,
    ),
]


class TemplateCatalog:
    """Active templates from storage, or the built-in set when none are stored."""

    def __init__(self, storage: IStorage):
        self._storage = storage

    async def list_templates(self) -> list[MessageTemplate]:
        templates = await self._storage.list_templates()
        if not templates:
            logger.debug("No stored message templates, using defaults")
            return list(DEFAULT_TEMPLATES)
        return templates

    async def get_template(self, template_id: str) -> MessageTemplate | None:
        for template in await self.list_templates():
            if template.id == template_id:
                return template
        return None
