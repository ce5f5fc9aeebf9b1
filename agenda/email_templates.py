"""
MJML Email Templates
Notification templates for appointments, with {variable} placeholders
"""

import html
import re
from dataclasses import dataclass
from typing import Optional

# App theme colors
THEME = {
    "primary": "#6366f1",
    "primary_dark": "#4f46e5",
    "background": "#f8fafc",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#16a34a",
    "warning": "#f59e0b",
}

PLACEHOLDER_PATTERN = re.compile(r"\{([^{}]+)\}")

TEMPLATE_CLIENT_CONFIRMATION = "t_sched"
TEMPLATE_PROFESSIONAL_NEW_BOOKING = "t_sched_professional"
TEMPLATE_CLIENT_UPDATE = "t_update"
TEMPLATE_PROFESSIONAL_UPDATE = "t_update_professional"
TEMPLATE_REMINDER_24H = "t_remind"
TEMPLATE_REMINDER_3H = "t_remind_3h"


@dataclass(frozen=True)
class NotificationTemplate:
    template_id: str
    subject: str
    body: str  # MJML fragment placed inside the base layout


def get_base_template(title: str, preview_text: str, content_sections: str) -> str:
    """Base MJML template wrapper for all emails"""
    return f"""
    <mjml>
      <mj-head>
        <mj-title>{title}</mj-title>
        <mj-preview>{preview_text}</mj-preview>
        <mj-attributes>
          <mj-all font-family="-apple-system, BlinkMacSystemFont, 'Segoe UI', 'Helvetica Neue', Arial, sans-serif" />
          <mj-text font-size="16px" line-height="1.6" color="{THEME['text_secondary']}" />
        </mj-attributes>
      </mj-head>
      <mj-body background-color="{THEME['background']}">
        <mj-section background-color="#ffffff" padding="40px 40px 48px 40px">
          <mj-column>
            <mj-text font-size="24px" font-weight="600" color="{THEME['text_primary']}" line-height="1.3" padding="0 0 16px 0">
              {title}
            </mj-text>

            {content_sections}
          </mj-column>
        </mj-section>

        <mj-section padding="32px 20px">
          <mj-column>
            <mj-text align="center" font-size="13px" color="#94a3b8" padding="0">
              You're receiving this because an appointment was booked through Agenda.
            </mj-text>
          </mj-column>
        </mj-section>
      </mj-body>
    </mjml>
    """


_APPOINTMENT_DETAILS = """
    <mj-text align="center" font-size="16px" color="{textPrimary}" padding="16px 0 0 0">
      📅 {appointmentDate}
    </mj-text>
    <mj-text align="center" font-size="16px" color="{textPrimary}" padding="0 0 20px 0">
      ⏰ {appointmentTime} · {serviceName}
    </mj-text>
"""

DEFAULT_TEMPLATES = {
    TEMPLATE_CLIENT_CONFIRMATION: NotificationTemplate(
        template_id=TEMPLATE_CLIENT_CONFIRMATION,
        subject="Your appointment with {professionalName} is booked",
        body="""
    <mj-text>Hi {clientName},</mj-text>
    <mj-text>Your appointment with <strong>{professionalName}</strong> is booked.</mj-text>
"""
        + _APPOINTMENT_DETAILS
        + """
    <mj-text color="{textMuted}">Status: {status}</mj-text>
""",
    ),
    TEMPLATE_PROFESSIONAL_NEW_BOOKING: NotificationTemplate(
        template_id=TEMPLATE_PROFESSIONAL_NEW_BOOKING,
        subject="New booking: {clientName} on {appointmentDate}",
        body="""
    <mj-text>Hi {professionalName},</mj-text>
    <mj-text><strong>{clientName}</strong> booked an appointment with you.</mj-text>
"""
        + _APPOINTMENT_DETAILS
        + """
    <mj-text color="{textMuted}">Client email: {clientEmail}</mj-text>
""",
    ),
    TEMPLATE_CLIENT_UPDATE: NotificationTemplate(
        template_id=TEMPLATE_CLIENT_UPDATE,
        subject="Your appointment with {professionalName} was updated",
        body="""
    <mj-text>Hi {clientName},</mj-text>
    <mj-text>Your appointment with <strong>{professionalName}</strong> has changed.</mj-text>
"""
        + _APPOINTMENT_DETAILS
        + """
    <mj-text color="{textMuted}">Current status: {status}</mj-text>
""",
    ),
    TEMPLATE_PROFESSIONAL_UPDATE: NotificationTemplate(
        template_id=TEMPLATE_PROFESSIONAL_UPDATE,
        subject="Appointment updated: {clientName} on {appointmentDate}",
        body="""
    <mj-text>Hi {professionalName},</mj-text>
    <mj-text>The appointment with <strong>{clientName}</strong> has changed.</mj-text>
"""
        + _APPOINTMENT_DETAILS
        + """
    <mj-text color="{textMuted}">Current status: {status}</mj-text>
""",
    ),
    TEMPLATE_REMINDER_24H: NotificationTemplate(
        template_id=TEMPLATE_REMINDER_24H,
        subject="Reminder: appointment tomorrow at {appointmentTime}",
        body="""
    <mj-text>Hi {clientName},</mj-text>
    <mj-text>This is a reminder of your appointment with <strong>{professionalName}</strong> tomorrow.</mj-text>
"""
        + _APPOINTMENT_DETAILS,
    ),
    TEMPLATE_REMINDER_3H: NotificationTemplate(
        template_id=TEMPLATE_REMINDER_3H,
        subject="Reminder: appointment today at {appointmentTime}",
        body="""
    <mj-text>Hi {clientName},</mj-text>
    <mj-text>Your appointment with <strong>{professionalName}</strong> starts in a few hours.</mj-text>
"""
        + _APPOINTMENT_DETAILS,
    ),
}

_THEME_VARIABLES = {
    "primaryColor": THEME["primary"],
    "textPrimary": THEME["text_primary"],
    "textMuted": THEME["text_muted"],
}


def apply_template(text: str, variables: dict, escape: bool = False) -> str:
    """Replace {name} placeholders; unknown names are left as they are"""

    def replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables or variables[key] is None:
            return match.group(0)
        value = str(variables[key])
        return html.escape(value) if escape else value

    return PLACEHOLDER_PATTERN.sub(replace, text)


def render_template(template: NotificationTemplate, variables: dict) -> tuple[str, str]:
    """Return (subject, mjml) for the template with variables applied"""
    subject = apply_template(template.subject, variables)
    body = apply_template(template.body, {**variables, **_THEME_VARIABLES}, escape=True)
    mjml = get_base_template(
        title=html.escape(subject), preview_text=html.escape(subject), content_sections=body
    )
    return subject, mjml


def get_default_template(template_id: str) -> Optional[NotificationTemplate]:
    return DEFAULT_TEMPLATES.get(template_id)
