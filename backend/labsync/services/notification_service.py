from __future__ import annotations

import json
import smtplib
from datetime import timedelta
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import List, Optional, Protocol, Sequence, Union
import logging

import resend
from pydantic import BaseModel, EmailStr, Field, ValidationError
from sqlmodel import Session

from labsync.config import Settings
from labsync.errors import DeliveryFailed, InvalidRequest, NotFound, ProviderUnconfigured, RateLimited
from labsync.models.base import Clock, utcnow
from labsync.models.email_log import EmailLog
from labsync.models.standup import Standup
from labsync.repositories.email_logs import EmailLogsRepository
from labsync.repositories.labs import LabsRepository
from labsync.repositories.standups import StandupsRepository
from labsync.services.standup_service import analysis_of


logger = logging.getLogger("labsync.notify")


class EmailRecipient(BaseModel):
    email: EmailStr
    name: Optional[str] = None


class OutboundEmail(BaseModel):
    to: List[str]
    subject: str
    body_text: str
    reply_to: Optional[str] = None
    sender_name: Optional[str] = None


class SentEmail(BaseModel):
    email_id: str
    log_id: int
    recipients: List[str] = Field(default_factory=list)


class EmailTransport(Protocol):
    name: str

    def is_configured(self) -> bool: ...

    def send(self, message: OutboundEmail) -> str:
        """Deliver the message and return the provider-assigned id."""


class ResendEmailTransport:
    """Delivers through the Resend API; the returned id is Resend's email id."""

    name = "resend"

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def is_configured(self) -> bool:
        return bool(self._settings.resend_api_key)

    def send(self, message: OutboundEmail) -> str:
        resend.api_key = self._settings.resend_api_key
        params: resend.Emails.SendParams = {
            "from": formataddr((message.sender_name or "LabSync", self._settings.email_from)),
            "to": list(message.to),
            "subject": message.subject,
            "text": message.body_text,
        }
        if message.reply_to:
            params["reply_to"] = message.reply_to
        response = resend.Emails.send(params)
        return str(response["id"])


class SmtpEmailTransport:
    name = "smtp"

    def __init__(self, settings: Settings, timeout: float = 30.0) -> None:
        self._settings = settings
        self._timeout = timeout

    def is_configured(self) -> bool:
        return bool(self._settings.smtp_host)

    def _build_message(self, message: OutboundEmail) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((message.sender_name or "LabSync", self._settings.email_from))
        msg["To"] = ", ".join(message.to)
        msg["Subject"] = message.subject
        if message.reply_to:
            msg["Reply-To"] = message.reply_to
        domain = self._settings.email_from.rpartition("@")[2] or None
        msg["Message-ID"] = make_msgid(domain=domain)
        msg.set_content(message.body_text)
        return msg

    def send(self, message: OutboundEmail) -> str:
        s = self._settings
        msg = self._build_message(message)
        with smtplib.SMTP(str(s.smtp_host), s.smtp_port, timeout=self._timeout) as smtp:
            if s.smtp_use_tls:
                smtp.starttls()
            if s.smtp_username:
                smtp.login(s.smtp_username, s.smtp_password or "")
            smtp.send_message(msg)
        return str(msg["Message-ID"])


def build_email_transport(settings: Settings) -> EmailTransport:
    if settings.email_provider == "smtp":
        return SmtpEmailTransport(settings)
    return ResendEmailTransport(settings)


def _coerce_recipients(recipients: Sequence[Union[str, EmailRecipient, dict]]) -> List[EmailRecipient]:
    if not recipients:
        raise InvalidRequest("At least one recipient is required")
    out: List[EmailRecipient] = []
    for r in recipients:
        if isinstance(r, EmailRecipient):
            out.append(r)
            continue
        try:
            out.append(EmailRecipient(email=r) if isinstance(r, str) else EmailRecipient.model_validate(r))
        except ValidationError as exc:
            raise InvalidRequest(f"Invalid recipient: {r!r}") from exc
    return out


def _bullet(lines: List[str]) -> List[str]:
    return [f"  - {line}" for line in lines] or ["  (none)"]


class NotificationDispatcher:
    """Sends standup summary emails, at most once per resend window."""

    def __init__(
        self,
        session: Session,
        transport: EmailTransport,
        settings: Optional[Settings] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.session = session
        self._transport = transport
        self._settings = settings or Settings()
        self._clock = clock
        self._logs = EmailLogsRepository(session)
        self._standups = StandupsRepository(session)

    def was_recently_sent(self, standup_id: int, window_hours: Optional[float] = None) -> bool:
        hours = self._settings.email_resend_window_hours if window_hours is None else window_hours
        since = self._clock() - timedelta(hours=hours)
        return self._logs.latest_since(standup_id, since) is not None

    def _get_standup(self, standup_id: int) -> Standup:
        standup = self._standups.get_active(standup_id)
        if standup is None:
            raise NotFound("Standup not found")
        return standup

    def default_subject(self, standup: Standup, lab_name: str) -> str:
        return f"Standup Meeting Notes - {lab_name} - {standup.date:%b} {standup.date.day}"

    def render_body(self, standup: Standup, lab_name: str, sender_name: str) -> str:
        analysis = analysis_of(standup)
        lines = [
            f"Standup meeting notes for {lab_name}",
            f"Date: {standup.date:%B} {standup.date.day}, {standup.date.year}",
        ]
        if standup.participants:
            lines.append("Participants: " + ", ".join(standup.participants))
        lines.append("")
        if analysis is None:
            lines.append("The analysis for this standup is not available yet.")
        else:
            lines += ["Summary:", f"  {analysis.summary or '(no summary)'}", "", "Action items:"]
            lines += _bullet(
                [f"{i.task} ({i.assignee})" if i.assignee else i.task for i in analysis.action_items]
            )
            lines += ["", "Blockers:"]
            lines += _bullet([f"[{b.severity}] {b.issue}" for b in analysis.blockers])
            lines += ["", "Updates:"]
            lines += _bullet(list(analysis.updates))
        lines += [
            "",
            f"Full transcript: {self._settings.app_url.rstrip('/')}/standups/{standup.id}",
            "",
            f"Sent by {sender_name}",
        ]
        return "\n".join(lines)

    def send(
        self,
        standup_id: int,
        recipients: Sequence[Union[str, EmailRecipient, dict]],
        sender_name: str,
        sender_email: str,
        subject: Optional[str] = None,
    ) -> SentEmail:
        parsed = _coerce_recipients(recipients)
        if not sender_name or not sender_name.strip():
            raise InvalidRequest("Sender name is required")
        try:
            sender = EmailRecipient(email=sender_email, name=sender_name)
        except ValidationError as exc:
            raise InvalidRequest("Valid sender email is required") from exc

        standup = self._get_standup(standup_id)
        if self.was_recently_sent(standup_id, self._settings.email_resend_window_hours):
            raise RateLimited("Email was already sent recently. Please wait before sending again.")
        if not self._transport.is_configured():
            raise ProviderUnconfigured(f"Email transport '{self._transport.name}' is not configured")

        lab_name = LabsRepository(self.session).name_for(standup.lab_id)
        to = [r.email for r in parsed]
        message = OutboundEmail(
            to=to,
            subject=subject or self.default_subject(standup, lab_name),
            body_text=self.render_body(standup, lab_name, sender_name),
            reply_to=str(sender.email),
            sender_name=sender_name,
        )
        try:
            email_id = self._transport.send(message)
        except Exception as exc:
            logger.warning("Standup email delivery failed", extra={"standup_id": standup_id, "error": str(exc)})
            raise DeliveryFailed(f"Failed to send email: {exc}") from exc

        log = self._logs.create(
            EmailLog(
                standup_id=standup_id,
                recipients_json=json.dumps(to, ensure_ascii=False),
                subject=message.subject,
                sender_name=sender_name,
                sender_email=str(sender.email),
                provider_message_id=email_id,
                sent_at=self._clock(),
            )
        )
        logger.info("Standup email sent", extra={"standup_id": standup_id, "recipients": len(to)})
        return SentEmail(email_id=email_id, log_id=log.id, recipients=to)  # type: ignore[arg-type]

    def suggested_recipients(self, standup_id: int) -> List[str]:
        standup = self._get_standup(standup_id)
        seen: set[str] = set()
        out: List[str] = []
        candidates = list(standup.participants)
        for log in self._logs.list_by_lab(standup.lab_id):
            candidates.extend(log.recipients)
        for c in candidates:
            key = c.strip().lower()
            if key and key not in seen:
                seen.add(key)
                out.append(c.strip())
        return out

    def history(self, standup_id: int) -> List[EmailLog]:
        return self._logs.list_by_standup(standup_id)
