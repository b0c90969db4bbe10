"""
PMC Licensing Workflow
Email Service.

Provides email sending capabilities with template support.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Uses:
    - MAIL_* config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when SMTP is not configured
    - All emails are recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from pmcrms.models import db
from pmcrms.models.notification import EmailLog

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #0c4a6e; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">Pune Municipal Corporation</h2>
        <p style="margin: 4px 0 0; color: #bae6fd; font-size: 13px;">{heading}</p>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        <p style="color: #1e293b;">Dear {applicant_name},</p>
        {body}
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">
            Building Development Department, PMC. This is an automated message.
        </p>
    </div>
</div>
"""


def _layout(heading: str, body: str) -> str:
    return _LAYOUT.replace("{heading}", heading).replace("{body}", body)


_TEMPLATES: dict[str, dict[str, str]] = {
    "stage_update": {
        "subject": "[PMC] Application {application_number}: {stage_title}",
        "html": _layout("Application Status Update", """
            <p style="color: #475569;">{stage_message}</p>
            <table style="width: 100%; border-collapse: collapse; margin: 12px 0;">
                <tr><td style="padding: 6px; color: #64748b;">Application</td>
                    <td style="padding: 6px;"><strong>{application_number}</strong></td></tr>
                <tr><td style="padding: 6px; color: #64748b;">Previous stage</td>
                    <td style="padding: 6px;">{old_stage_title}</td></tr>
                <tr><td style="padding: 6px; color: #64748b;">Current stage</td>
                    <td style="padding: 6px;">{stage_title}</td></tr>
                <tr><td style="padding: 6px; color: #64748b;">Reviewed by</td>
                    <td style="padding: 6px;">{officer_title}</td></tr>
            </table>
            <p style="color: #475569;"><strong>Next steps:</strong> {next_steps}</p>
            {comments_block}
        """),
    },
    "appointment_scheduled": {
        "subject": "[PMC] Document verification appointment for {application_number}",
        "html": _layout("Appointment Scheduled", """
            <p style="color: #475569;">
                An appointment has been scheduled to verify the original documents
                of your application <strong>{application_number}</strong>.
            </p>
            <table style="width: 100%; border-collapse: collapse; margin: 12px 0;">
                <tr><td style="padding: 6px; color: #64748b;">Date</td>
                    <td style="padding: 6px;"><strong>{appointment_date}</strong></td></tr>
                <tr><td style="padding: 6px; color: #64748b;">Place</td>
                    <td style="padding: 6px;">{place}</td></tr>
                <tr><td style="padding: 6px; color: #64748b;">Room</td>
                    <td style="padding: 6px;">{room_number}</td></tr>
                <tr><td style="padding: 6px; color: #64748b;">Contact person</td>
                    <td style="padding: 6px;">{contact_person}</td></tr>
            </table>
            <p style="color: #475569;">Please carry all original documents.</p>
            {comments_block}
        """),
    },
    "payment_received": {
        "subject": "[PMC] Payment received for {application_number}",
        "html": _layout("Payment Confirmation", """
            <p style="color: #475569;">
                We have received your licence fee of <strong>Rs. {amount}</strong>
                (order {order_id}). Your application now moves to clerical processing.
            </p>
        """),
    },
    "login_otp": {
        "subject": "[PMC] Your one-time password",
        "html": _layout("Login Verification", """
            <p style="color: #475569;">Your one-time password is</p>
            <p style="font-size: 24px; letter-spacing: 4px;"><strong>{otp}</strong></p>
            <p style="color: #64748b;">It is valid for {validity_minutes} minutes. Do not share it.</p>
        """),
    },
    "officer_invitation": {
        "subject": "[PMC] You have been added as {officer_title}",
        "html": _layout("Officer Account", """
            <p style="color: #475569;">
                An officer account has been created for you with the role
                <strong>{officer_title}</strong>. Set your password to activate it.
            </p>
            <p><a href="{set_password_url}" style="color: #1d4ed8;">Set your password</a></p>
            <p style="color: #64748b; font-size: 12px;">The link expires in 72 hours.</p>
        """),
    },
}


class EmailService:
    """
    Email sending service with template support.

    In development/test mode (no MAIL_SERVER configured), emails are
    logged to the database but not actually sent via SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        """Check if SMTP is configured."""
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        """Get an email template by name."""
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
        category: str = "workflow",
        application_id: str | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        If SMTP is not configured, the email is logged with status='sent'
        (in dev mode) to simulate sending without actual delivery.

        Returns:
            The EmailLog record for this email.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            category=category,
            status="queued",
            application_id=application_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            # Dev/test mode: log only
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)

        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        category: str = "workflow",
        application_id: str | None = None,
    ) -> EmailLog | None:
        """
        Send an email using a named template.

        Template variables are interpolated from the context dict.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        subject = template["subject"].format_map(_SafeDict(context))
        html_body = template["html"].format_map(_SafeDict(context))

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
            category=category,
            application_id=application_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
