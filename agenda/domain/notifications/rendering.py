"""Template lookup and variable building for appointment emails"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...email_service import compile_mjml_to_html
from ...email_templates import NotificationTemplate, get_default_template, render_template
from ...models import EmailTemplate, Professional
from ..scheduling.time_windows import coerce_datetime, to_local

logger = logging.getLogger(__name__)


def load_template(db: Session, template_id: str) -> NotificationTemplate:
    """Platform override from the database when enabled, otherwise the built-in template"""
    override = (
        db.query(EmailTemplate)
        .filter(EmailTemplate.template_id == template_id, EmailTemplate.enabled.is_(True))
        .first()
    )
    if override:
        return NotificationTemplate(template_id=template_id, subject=override.subject, body=override.body)

    template = get_default_template(template_id)
    if template is None:
        raise KeyError(f"Unknown email template: {template_id}")
    return template


def build_template_variables(snapshot: dict, professional: Optional[Professional]) -> dict:
    """
    Variables available to appointment templates.

    Date and time are rendered in the professional's timezone. Portuguese
    keys (with spaces) are kept for templates written against the older names.
    """
    starts_at = coerce_datetime(snapshot.get("date_time"))
    tz_name = professional.timezone if professional else None
    local = to_local(starts_at, tz_name) if starts_at else None
    appointment_date = local.strftime("%d/%m/%Y") if local else ""
    appointment_time = local.strftime("%H:%M") if local else ""

    client_name = snapshot.get("client_name") or ""
    professional_name = professional.name if professional else ""
    service_name = snapshot.get("service") or snapshot.get("service_id") or ""

    return {
        "clientName": client_name,
        "clientEmail": snapshot.get("client_email") or "",
        "professionalName": professional_name,
        "serviceName": service_name,
        "appointmentDate": appointment_date,
        "appointmentTime": appointment_time,
        "dateTime": f"{appointment_date} {appointment_time}".strip(),
        "time": appointment_time,
        "status": snapshot.get("status") or "",
        "date": appointment_date,
        "nome do cliente": client_name,
        "nome do profissional": professional_name,
        "nome do serviço": service_name,
        "data": appointment_date,
        "horário": appointment_time,
    }


def render_notification(db: Session, template_id: str, variables: dict) -> tuple[str, str]:
    """Return (subject, html) ready for an EmailSender"""
    template = load_template(db, template_id)
    subject, mjml = render_template(template, variables)
    return subject, compile_mjml_to_html(mjml)
