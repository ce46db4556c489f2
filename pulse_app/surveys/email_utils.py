"""Email utilities for survey invitations.

Invitations go out as multipart messages: a plain-text body plus an HTML
alternative rendered from Markdown, so the operator's custom message may use
Markdown formatting.
"""

from __future__ import annotations

from html import unescape
import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.utils.html import escape, strip_tags
import markdown

if TYPE_CHECKING:
    from .models import SurveyInvitation

logger = logging.getLogger(__name__)


def markdown_to_html(markdown_text: str) -> str:
    return markdown.markdown(
        markdown_text,
        extensions=["extra", "nl2br", "sane_lists"],
    )


def build_participation_url(invitation: "SurveyInvitation") -> str:
    site_url = getattr(settings, "SITE_URL", "http://localhost:8000")
    return (
        f"{site_url.rstrip('/')}/surveys/participate/"
        f"{invitation.survey.survey_id}?code={invitation.code}"
    )


def build_invitation_markdown(invitation: "SurveyInvitation", message: str = "") -> str:
    survey = invitation.survey
    company_name = (
        invitation.company.name
        if invitation.company_id
        else getattr(settings, "PULSE_OPERATOR_NAME", "Meditec")
    )
    participation_url = build_participation_url(invitation)

    parts = [
        "## Umfrage-Einladung",
        f"Hallo {escape(invitation.name)},",
        f'Sie wurden eingeladen, an der Umfrage "{escape(survey.title)}" '
        f"von {escape(company_name)} teilzunehmen.",
    ]
    if message:
        parts.append(message.strip())
    parts.extend(
        [
            "Um an der Umfrage teilzunehmen, klicken Sie bitte auf den folgenden Link:",
            f"[An der Umfrage teilnehmen]({participation_url})",
            f"Oder geben Sie diesen Code ein: **{invitation.code}**",
            "Vielen Dank für Ihre Teilnahme!",
            f"Mit freundlichen Grüßen,\nDas {escape(company_name)}-Team",
        ]
    )
    return "\n\n".join(parts)


def send_invitation_email(invitation: "SurveyInvitation", message: str = "") -> bool:
    """Send the participation link and raw code to the invitee.

    Returns:
        True if the email was handed to the backend, False otherwise. Failures
        are logged, never raised; the invitation record stays as written.
    """
    subject = f"Einladung zur Umfrage: {invitation.survey.title}"
    markdown_content = build_invitation_markdown(invitation, message)
    html_content = markdown_to_html(markdown_content)
    # Names and titles are escaped for the HTML part; plain text shows them as typed
    plain_text = unescape(strip_tags(html_content))
    plain_content = f"{plain_text}\n\n{build_participation_url(invitation)}\n"

    try:
        email = EmailMultiAlternatives(
            subject=subject,
            body=plain_content,
            from_email=settings.DEFAULT_FROM_EMAIL,
            to=[invitation.email],
        )
        email.attach_alternative(html_content, "text/html")
        email.send()
    except Exception:
        logger.exception(
            f"Failed to send invitation email to {invitation.email} "
            f"for survey {invitation.survey_id}"
        )
        return False

    logger.info(
        f"Invitation email sent to {invitation.email} for survey {invitation.survey_id}"
    )
    return True
