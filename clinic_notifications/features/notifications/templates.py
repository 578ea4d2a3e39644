"""Bilingual notification templates.

Every ``NotificationType`` has exactly one ``TemplateDefinition``: the fields the
caller must supply, the default priority, channels and expiry, and the
Arabic/English title and body as Jinja2 strings. Rendering runs in a
sandboxed environment with ``StrictUndefined`` so a template can never
silently render an empty placeholder.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from clinic_notifications.core.exceptions import TemplateValidationError

from .enums import Channel, NotificationType, Priority

_IN_APP = Channel.IN_APP
_SMS = Channel.SMS
_PUSH = Channel.PUSH
_EMAIL = Channel.EMAIL


@dataclass(frozen=True, slots=True)
class TemplateDefinition:
    type: NotificationType
    priority: Priority
    channels: tuple[Channel, ...]
    expires_after_hours: int | None
    required_fields: tuple[str, ...]
    title_ar: str
    title_en: str
    body_ar: str
    body_en: str
    defaults: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class RenderedContent:
    title_ar: str
    title_en: str
    body_ar: str
    body_en: str


# Lead-in phrases for session reminders, selected by the ``when`` param
_WHEN_AR = '{% if when == "hour_before" %}خلال ساعة{% elif when == "now" %}الآن{% else %}غداً{% endif %}'
_WHEN_EN = '{% if when == "hour_before" %}in one hour{% elif when == "now" %}now{% else %}tomorrow{% endif %}'


TEMPLATES: dict[NotificationType, TemplateDefinition] = {
    definition.type: definition
    for definition in (
        # Attendance
        TemplateDefinition(
            type=NotificationType.ATTENDANCE_CHECKIN,
            priority=Priority.MEDIUM,
            channels=(_IN_APP, _PUSH),
            expires_after_hours=24,
            required_fields=("student_name", "time"),
            title_ar="تسجيل وصول الطالب",
            title_en="Student Check-in",
            body_ar="وصل {{ student_name }} بأمان إلى المركز في {{ time }}"
            "{% if room is defined and room %} في الغرفة {{ room }}{% endif %}.",
            body_en="{{ student_name }} has checked in safely at {{ time }}"
            "{% if room is defined and room %} in room {{ room }}{% endif %}.",
        ),
        TemplateDefinition(
            type=NotificationType.ATTENDANCE_CHECKOUT,
            priority=Priority.MEDIUM,
            channels=(_IN_APP, _PUSH),
            expires_after_hours=24,
            required_fields=("student_name", "session_type", "time"),
            title_ar="انتهاء الجلسة",
            title_en="Session Complete",
            body_ar="انتهت جلسة {{ session_type }} للطالب {{ student_name }} في {{ time }}.",
            body_en="{{ student_name }}'s {{ session_type }} session completed at {{ time }}.",
        ),
        TemplateDefinition(
            type=NotificationType.ATTENDANCE_LATE,
            priority=Priority.HIGH,
            channels=(_IN_APP, _SMS, _PUSH),
            expires_after_hours=6,
            required_fields=("student_name", "minutes", "session_type"),
            title_ar="تأخير في الوصول",
            title_en="Late Arrival",
            body_ar="وصل الطالب {{ student_name }} متأخراً {{ minutes }} دقيقة عن موعد جلسة {{ session_type }}.",
            body_en="{{ student_name }} arrived {{ minutes }} minutes late for their {{ session_type }} session.",
        ),
        TemplateDefinition(
            type=NotificationType.ATTENDANCE_ABSENT,
            priority=Priority.HIGH,
            channels=(_IN_APP, _SMS, _EMAIL),
            expires_after_hours=12,
            required_fields=("student_name", "session_type", "scheduled_time"),
            title_ar="غياب الطالب",
            title_en="Student Absence",
            body_ar="لم يحضر الطالب {{ student_name }} لجلسة {{ session_type }} المقررة في {{ scheduled_time }}.",
            body_en="{{ student_name }} did not attend their scheduled {{ session_type }} session at {{ scheduled_time }}.",
        ),
        # Sessions
        TemplateDefinition(
            type=NotificationType.SESSION_REMINDER,
            priority=Priority.MEDIUM,
            channels=(_IN_APP, _SMS, _EMAIL),
            expires_after_hours=24,
            required_fields=("student_name", "session_type", "therapist_name", "time"),
            title_ar="تذكير بموعد الجلسة",
            title_en="Session Reminder",
            body_ar="تذكير: لدى {{ student_name }} جلسة {{ session_type }} مع {{ therapist_name }} "
            + _WHEN_AR
            + " في {{ time }}.",
            body_en="Reminder: {{ student_name }} has a {{ session_type }} session with {{ therapist_name }} "
            + _WHEN_EN
            + " at {{ time }}.",
            defaults={"when": "day_before"},
        ),
        TemplateDefinition(
            type=NotificationType.SESSION_STARTED,
            priority=Priority.MEDIUM,
            channels=(_IN_APP,),
            expires_after_hours=6,
            required_fields=("student_name", "session_type"),
            title_ar="بدء الجلسة",
            title_en="Session Started",
            body_ar="بدأت جلسة {{ session_type }} للطالب {{ student_name }}.",
            body_en="{{ session_type }} session has started for {{ student_name }}.",
        ),
        TemplateDefinition(
            type=NotificationType.SESSION_COMPLETED,
            priority=Priority.LOW,
            channels=(_IN_APP,),
            expires_after_hours=48,
            required_fields=("student_name", "session_type"),
            title_ar="اكتمال الجلسة",
            title_en="Session Completed",
            body_ar="تم إكمال جلسة {{ session_type }} للطالب {{ student_name }} بنجاح.",
            body_en="{{ session_type }} session for {{ student_name }} completed successfully.",
        ),
        TemplateDefinition(
            type=NotificationType.SESSION_CANCELLED,
            priority=Priority.HIGH,
            channels=(_IN_APP, _SMS, _EMAIL, _PUSH),
            expires_after_hours=48,
            required_fields=("session_type", "scheduled_time"),
            title_ar="إلغاء الجلسة",
            title_en="Session Cancelled",
            body_ar="تم إلغاء جلسة {{ session_type }} المقررة في {{ scheduled_time }}."
            "{% if reason is defined and reason %} السبب: {{ reason }}{% endif %}",
            body_en="Your {{ session_type }} session scheduled for {{ scheduled_time }} has been cancelled."
            "{% if reason is defined and reason %} Reason: {{ reason }}{% endif %}",
        ),
        TemplateDefinition(
            type=NotificationType.SESSION_RESCHEDULED,
            priority=Priority.HIGH,
            channels=(_IN_APP, _SMS, _EMAIL),
            expires_after_hours=48,
            required_fields=("session_type", "new_time"),
            title_ar="إعادة جدولة الجلسة",
            title_en="Session Rescheduled",
            body_ar="تم إعادة جدولة جلسة {{ session_type }} إلى {{ new_time }}.",
            body_en="Your {{ session_type }} session has been rescheduled to {{ new_time }}.",
        ),
        # Assessments
        TemplateDefinition(
            type=NotificationType.ASSESSMENT_DUE,
            priority=Priority.MEDIUM,
            channels=(_IN_APP, _EMAIL),
            expires_after_hours=72,
            required_fields=("assessment_type", "student_name", "due_date"),
            title_ar="تقييم مطلوب",
            title_en="Assessment Due",
            body_ar="يجب إجراء تقييم {{ assessment_type }} للطالب {{ student_name }} بحلول {{ due_date }}.",
            body_en="{{ assessment_type }} assessment for {{ student_name }} is due by {{ due_date }}.",
        ),
        TemplateDefinition(
            type=NotificationType.ASSESSMENT_COMPLETED,
            priority=Priority.LOW,
            channels=(_IN_APP, _EMAIL),
            expires_after_hours=168,
            required_fields=("assessment_type", "student_name"),
            title_ar="اكتمال التقييم",
            title_en="Assessment Completed",
            body_ar="تم إكمال تقييم {{ assessment_type }} للطالب {{ student_name }}.",
            body_en="{{ assessment_type }} assessment for {{ student_name }} has been completed.",
        ),
        TemplateDefinition(
            type=NotificationType.ASSESSMENT_OVERDUE,
            priority=Priority.HIGH,
            channels=(_IN_APP, _EMAIL),
            expires_after_hours=48,
            required_fields=("assessment_type", "student_name", "days_overdue"),
            title_ar="تقييم متأخر",
            title_en="Assessment Overdue",
            body_ar="تقييم {{ assessment_type }} للطالب {{ student_name }} متأخر {{ days_overdue }} أيام.",
            body_en="{{ assessment_type }} assessment for {{ student_name }} is {{ days_overdue }} days overdue.",
        ),
        # Progress
        TemplateDefinition(
            type=NotificationType.GOAL_COMPLETED,
            priority=Priority.LOW,
            channels=(_IN_APP, _EMAIL),
            expires_after_hours=168,
            required_fields=("student_name", "goal_title", "progress"),
            title_ar="🎉 تحقيق هدف!",
            title_en="🎉 Goal Achieved!",
            body_ar='تهانينا! حقق {{ student_name }} الهدف: "{{ goal_title }}". نسبة التحسن: {{ progress }}%',
            body_en='Congratulations! {{ student_name }} has achieved the goal: "{{ goal_title }}". '
            "Progress: {{ progress }}%",
        ),
        TemplateDefinition(
            type=NotificationType.PROGRESS_UPDATE,
            priority=Priority.MEDIUM,
            channels=(_IN_APP,),
            expires_after_hours=168,
            required_fields=("student_name", "goal_area", "progress"),
            title_ar="تحديث التقدم",
            title_en="Progress Update",
            body_ar="تم تحديث تقدم {{ student_name }} في {{ goal_area }}. التقدم الحالي: {{ progress }}%",
            body_en="Progress update for {{ student_name }} in {{ goal_area }}. Current progress: {{ progress }}%",
        ),
        TemplateDefinition(
            type=NotificationType.MILESTONE_REACHED,
            priority=Priority.MEDIUM,
            channels=(_IN_APP, _EMAIL),
            expires_after_hours=168,
            required_fields=("student_name", "milestone_title"),
            title_ar="🎯 علامة فارقة",
            title_en="🎯 Milestone Reached",
            body_ar="وصل {{ student_name }} إلى علامة فارقة مهمة في {{ milestone_title }}.",
            body_en="{{ student_name }} has reached an important milestone in {{ milestone_title }}.",
        ),
        # Administrative
        TemplateDefinition(
            type=NotificationType.PAYMENT_DUE,
            priority=Priority.HIGH,
            channels=(_IN_APP, _EMAIL, _SMS),
            expires_after_hours=72,
            required_fields=("amount", "student_name", "due_date"),
            title_ar="استحقاق دفع",
            title_en="Payment Due",
            body_ar="يستحق دفع مبلغ {{ amount }} ر.س للطالب {{ student_name }} بتاريخ {{ due_date }}.",
            body_en="Payment of {{ amount }} SAR is due for {{ student_name }} by {{ due_date }}.",
        ),
        TemplateDefinition(
            type=NotificationType.PAYMENT_RECEIVED,
            priority=Priority.LOW,
            channels=(_IN_APP, _EMAIL),
            expires_after_hours=168,
            required_fields=("amount", "student_name"),
            title_ar="استلام دفع",
            title_en="Payment Received",
            body_ar="تم استلام دفع بمبلغ {{ amount }} ر.س للطالب {{ student_name }}.",
            body_en="Payment of {{ amount }} SAR received for {{ student_name }}.",
        ),
        TemplateDefinition(
            type=NotificationType.DOCUMENT_REQUIRED,
            priority=Priority.MEDIUM,
            channels=(_IN_APP, _EMAIL),
            expires_after_hours=168,
            required_fields=("document_type", "student_name", "due_date"),
            title_ar="وثيقة مطلوبة",
            title_en="Document Required",
            body_ar="يرجى تقديم {{ document_type }} للطالب {{ student_name }} قبل {{ due_date }}.",
            body_en="Please submit {{ document_type }} for {{ student_name }} before {{ due_date }}.",
        ),
        TemplateDefinition(
            type=NotificationType.SYSTEM_UPDATE,
            priority=Priority.LOW,
            channels=(_IN_APP,),
            expires_after_hours=72,
            required_fields=("update_message",),
            title_ar="تحديث النظام",
            title_en="System Update",
            body_ar="تحديث النظام: {{ update_message }}",
            body_en="System update: {{ update_message }}",
        ),
        TemplateDefinition(
            type=NotificationType.EMERGENCY_CONTACT,
            priority=Priority.URGENT,
            channels=(_IN_APP, _SMS, _PUSH, _EMAIL),
            expires_after_hours=2,
            required_fields=("student_name", "reason"),
            title_ar="🚨 اتصال طوارئ",
            title_en="🚨 Emergency Contact",
            body_ar="يرجى الاتصال بالمركز فوراً بخصوص {{ student_name }}. السبب: {{ reason }}",
            body_en="Please contact the center immediately regarding {{ student_name }}. Reason: {{ reason }}",
        ),
    )
}

_missing = set(NotificationType) - set(TEMPLATES)
if _missing:
    msg = f"No template defined for: {', '.join(sorted(_missing))}"
    raise RuntimeError(msg)


def get_template(notification_type: NotificationType | str) -> TemplateDefinition:
    """Look up the template for a notification type.

    Raises:
        TemplateValidationError: If the type is not part of the catalogue.
    """
    try:
        return TEMPLATES[NotificationType(notification_type)]
    except ValueError as exc:
        raise TemplateValidationError(str(notification_type), "type", reason="unknown notification type") from exc


class TemplateRenderer:
    """Renders both language variants of a template.

    Compiled templates are cached per (type, part).
    """

    def __init__(self) -> None:
        self._env = SandboxedEnvironment(
            autoescape=False,
            undefined=StrictUndefined,
        )
        self._compiled: dict[tuple[NotificationType, str], Any] = {}

    def validate(self, definition: TemplateDefinition, params: dict[str, Any]) -> None:
        """Check that every required field is present and non-empty.

        Raises:
            TemplateValidationError: Naming the first missing field.
        """
        for name in definition.required_fields:
            value = params.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise TemplateValidationError(definition.type.value, name)

    def render(self, definition: TemplateDefinition, params: dict[str, Any]) -> RenderedContent:
        self.validate(definition, params)
        context = {**definition.defaults, **params}
        try:
            return RenderedContent(
                title_ar=self._render(definition, "title_ar", context),
                title_en=self._render(definition, "title_en", context),
                body_ar=self._render(definition, "body_ar", context),
                body_en=self._render(definition, "body_en", context),
            )
        except TemplateError as exc:
            raise TemplateValidationError(definition.type.value, "params", reason=str(exc)) from exc

    def _render(self, definition: TemplateDefinition, part: str, context: dict[str, Any]) -> str:
        key = (definition.type, part)
        template = self._compiled.get(key)
        if template is None:
            template = self._env.from_string(getattr(definition, part))
            self._compiled[key] = template
        return template.render(**context).strip()
