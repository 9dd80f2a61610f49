"""Outbound ticket notifications over Slack and email.

Notifications are best-effort. :class:`NotificationFanout` runs every
delivery step independently, logs and counts failures, and never raises from
``status_changed`` or ``comment_added``. The ``deliver_*`` methods used by the
outbox processor do raise, so failed events can be retried; each channel they
reach is recorded in a :class:`DeliveryLedger` and is not repeated on retry.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Any, Awaitable, Callable, Iterable, Mapping

import httpx

from helpdesk.core.config import Settings
from helpdesk.metrics import MetricsRegistry, metrics_registry
from helpdesk.metrics.definitions import NOTIFICATION_FAILURES_TOTAL, NOTIFICATIONS_SENT_TOTAL
from helpdesk.security.roles import Role

from .metadata import ChatThread, Comment, CommentType, EmailThread
from .state import STATUS_DEFINITIONS, TicketStatus

logger = logging.getLogger(__name__)

_STATUS_LABELS = {definition.status: definition.label for definition in STATUS_DEFINITIONS}


class NotificationError(RuntimeError):
    """Raised when a notification channel rejects a delivery."""


class SlackClient:
    """Minimal Slack client for incoming webhooks and ``chat.postMessage``."""

    def __init__(
        self,
        *,
        webhook_url: str | None = None,
        bot_token: str | None = None,
        api_base_url: str = "https://slack.com/api",
        default_channel: str | None = None,
        category_channels: Mapping[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._bot_token = bot_token
        self._api_base_url = api_base_url.rstrip("/")
        self._default_channel = default_channel
        self._category_channels = {key.lower(): value for key, value in (category_channels or {}).items()}
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Settings) -> SlackClient:
        return cls(
            webhook_url=settings.slack_webhook_url,
            bot_token=settings.slack_bot_token,
            api_base_url=settings.slack_api_base_url,
            default_channel=settings.slack_default_channel,
            category_channels=settings.slack_category_channels,
            timeout=settings.slack_timeout_seconds,
        )

    @property
    def has_webhook(self) -> bool:
        return bool(self._webhook_url)

    @property
    def can_post(self) -> bool:
        return bool(self._bot_token)

    def channel_for(self, category: str | None) -> str | None:
        if category and category.lower() in self._category_channels:
            return self._category_channels[category.lower()]
        return self._default_channel

    async def post_webhook(self, text: str) -> None:
        if not self._webhook_url:
            raise NotificationError("Slack webhook URL is not configured")
        response = await self._client.post(self._webhook_url, json={"text": text})
        response.raise_for_status()

    async def post_message(self, text: str, *, channel: str | None, thread_ts: str | None = None) -> str | None:
        """Post to ``channel`` (threaded when ``thread_ts`` is set) and return the message ts."""

        if not self._bot_token:
            raise NotificationError("Slack bot token is not configured")
        if not channel:
            raise NotificationError("No Slack channel configured")
        payload: dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            payload["thread_ts"] = thread_ts
        response = await self._client.post(
            f"{self._api_base_url}/chat.postMessage",
            json=payload,
            headers={"Authorization": f"Bearer {self._bot_token}"},
        )
        response.raise_for_status()
        body = response.json()
        if not body.get("ok", False):
            raise NotificationError(f"Slack API error: {body.get('error', 'unknown_error')}")
        return body.get("ts")

    async def aclose(self) -> None:
        await self._client.aclose()


SmtpFactory = Callable[[str, int], smtplib.SMTP]


class EmailSender:
    """Send plain text mail over SMTP without blocking the event loop."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        from_address: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        smtp_factory: SmtpFactory = smtplib.SMTP,
    ) -> None:
        self._host = host
        self._port = port
        self._from_address = from_address
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._smtp_factory = smtp_factory

    @classmethod
    def from_settings(cls, settings: Settings) -> EmailSender:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            from_address=settings.email_from_address,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )

    def build_message(
        self,
        *,
        to: str,
        subject: str,
        body: str,
        in_reply_to: str | None = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._from_address
        message["To"] = to
        message["Subject"] = subject
        message["Message-ID"] = make_msgid(domain=self._from_address.partition("@")[2] or None)
        if in_reply_to:
            message["In-Reply-To"] = in_reply_to
            message["References"] = in_reply_to
        message.set_content(body)
        return message

    async def send(self, *, to: str, subject: str, body: str, in_reply_to: str | None = None) -> str:
        message = self.build_message(to=to, subject=subject, body=body, in_reply_to=in_reply_to)
        await asyncio.to_thread(self._send_sync, message)
        return str(message["Message-ID"])

    def _send_sync(self, message: EmailMessage) -> None:
        with self._smtp_factory(self._host, self._port) as server:
            if self._use_tls:
                server.starttls()
            if self._username:
                server.login(self._username, self._password or "")
            server.send_message(message)


class DeliveryLedger:
    """Channels an outbox event has already reached.

    The processor persists :attr:`delivered` when a handler fails, so a
    retried event skips the channels that went through on an earlier attempt.
    """

    def __init__(self, delivered: Iterable[str] = ()) -> None:
        self.delivered: set[str] = set(delivered)

    async def once(self, channel: str, send: Callable[[], Awaitable[Any]]) -> bool:
        if channel in self.delivered:
            return False
        await send()
        self.delivered.add(channel)
        return True


@dataclass(slots=True)
class StatusChangeNotice:
    ticket_id: int
    title: str
    category: str
    subcategory: str | None
    previous_status: TicketStatus
    new_status: TicketStatus
    actor_role: Role
    recipient_email: str | None = None
    chat_thread: ChatThread | None = None
    email_thread: EmailThread | None = None


@dataclass(slots=True)
class CommentNotice:
    ticket_id: int
    title: str
    category: str
    comment: Comment
    author_role: Role
    recipient_email: str | None = None
    chat_thread: ChatThread | None = None
    email_thread: EmailThread | None = None


def reopen_message(ticket_id: int, actor_role: Role) -> str:
    if actor_role.is_admin_level:
        who = "an admin"
    elif actor_role is Role.COMMITTEE:
        who = "a committee member"
    else:
        who = "the student"
    return f"*Ticket Reopened*\nTicket #{ticket_id} has been reopened by {who}."


def threaded_subject(default: str, thread: EmailThread | None) -> str:
    if thread is not None and thread.subject:
        base = thread.subject
    else:
        base = default
    return base if base.lower().startswith("re:") else f"Re: {base}"


def _label(value: Any) -> str:
    try:
        return _STATUS_LABELS[TicketStatus(value)]
    except (KeyError, ValueError):
        return str(value)


def _email_thread(raw: Mapping[str, Any]) -> EmailThread | None:
    return EmailThread.from_dict(raw) if isinstance(raw, Mapping) else None


class NotificationFanout:
    """Dispatch ticket notifications to the configured channels."""

    def __init__(
        self,
        *,
        chat: SlackClient | None = None,
        email: EmailSender | None = None,
        registry: MetricsRegistry | None = None,
    ) -> None:
        self._chat = chat
        self._email = email
        registry = registry or metrics_registry
        self._sent = registry.counter(NOTIFICATIONS_SENT_TOTAL, label_names=("channel",))
        self._failures = registry.counter(NOTIFICATION_FAILURES_TOTAL, label_names=("channel",))

    async def aclose(self) -> None:
        if self._chat is not None:
            await self._chat.aclose()

    async def status_changed(self, notice: StatusChangeNotice) -> None:
        chat = self._chat
        if chat is not None:
            if notice.new_status is TicketStatus.RESOLVED and chat.has_webhook:
                subcategory = f" / {notice.subcategory}" if notice.subcategory else ""
                text = f"Ticket #{notice.ticket_id} marked resolved\nCategory: {notice.category}{subcategory}"
                await self._attempt("slack_webhook", notice.ticket_id, lambda: chat.post_webhook(text))

            reopened = notice.new_status is TicketStatus.REOPENED and notice.previous_status.is_final
            thread = notice.chat_thread
            if reopened and thread is not None and chat.can_post:
                text = reopen_message(notice.ticket_id, notice.actor_role)
                channel = thread.channel or chat.channel_for(notice.category)
                await self._attempt(
                    "slack_thread",
                    notice.ticket_id,
                    lambda: chat.post_message(text, channel=channel, thread_ts=thread.ts),
                )

        email = self._email
        if email is not None and notice.recipient_email:
            label = _STATUS_LABELS.get(notice.new_status, notice.new_status.value)
            subject = threaded_subject(f"Ticket #{notice.ticket_id} - Status Updated", notice.email_thread)
            body = (
                f"The status of your ticket #{notice.ticket_id} ({notice.title}) "
                f"changed from {_STATUS_LABELS.get(notice.previous_status, notice.previous_status.value)} "
                f"to {label}."
            )
            in_reply_to = notice.email_thread.message_id if notice.email_thread else None
            recipient = notice.recipient_email
            await self._attempt(
                "email",
                notice.ticket_id,
                lambda: email.send(to=recipient, subject=subject, body=body, in_reply_to=in_reply_to),
            )

    async def comment_added(self, notice: CommentNotice) -> None:
        comment = notice.comment
        if comment.type is not CommentType.STUDENT_VISIBLE:
            return

        chat = self._chat
        thread = notice.chat_thread
        if chat is not None and chat.can_post and thread is not None:
            text = f"New comment on ticket #{notice.ticket_id} from {comment.author}:\n{comment.text}"
            channel = thread.channel or chat.channel_for(notice.category)
            await self._attempt(
                "slack_thread",
                notice.ticket_id,
                lambda: chat.post_message(text, channel=channel, thread_ts=thread.ts),
            )

        email = self._email
        if email is not None and notice.author_role.is_admin_level and notice.recipient_email:
            subject = threaded_subject(f"New Comment on Ticket #{notice.ticket_id}", notice.email_thread)
            body = f"{comment.author} commented on your ticket #{notice.ticket_id} ({notice.title}):\n\n{comment.text}"
            in_reply_to = notice.email_thread.message_id if notice.email_thread else None
            recipient = notice.recipient_email
            await self._attempt(
                "email",
                notice.ticket_id,
                lambda: email.send(to=recipient, subject=subject, body=body, in_reply_to=in_reply_to),
            )

    async def deliver_forwarded(self, payload: Mapping[str, Any], ledger: DeliveryLedger) -> None:
        ticket_id = payload.get("ticket_id")
        committee = payload.get("committee_name") or "a committee"
        title = payload.get("title") or ""
        reason = payload.get("reason")

        head_email = payload.get("head_email")
        if self._email is not None and head_email:
            body = f"Ticket #{ticket_id} ({title}) has been forwarded to {committee} and assigned to you."
            if reason:
                body += f"\n\nReason: {reason}"
            subject = f"Ticket #{ticket_id} forwarded to {committee}"
            await self._send_event_email(ledger, to=str(head_email), subject=subject, body=body)

        text = f"Ticket #{ticket_id} forwarded to {committee}"
        if reason:
            text += f"\nReason: {reason}"
        await self._post_event_message(payload, text, ledger)

    async def deliver_escalated(self, payload: Mapping[str, Any], ledger: DeliveryLedger) -> None:
        ticket_id = payload.get("ticket_id")
        level = payload.get("escalation_level")
        if payload.get("automatic"):
            text = f"*Auto-escalation #{level}*\nTicket #{ticket_id} was escalated automatically."
        else:
            text = f"*Ticket Escalated*\nTicket #{ticket_id} escalated to level {level}."
        if payload.get("reason"):
            text += f"\nReason: {payload['reason']}"
        await self._post_event_message(payload, text, ledger)

    async def deliver_status_updated(self, payload: Mapping[str, Any], ledger: DeliveryLedger) -> None:
        """Mirror a committed status change into the ticket's chat thread.

        Reopening is posted to the thread as soon as it happens, so only the
        other transitions are mirrored here.
        """

        new_status = payload.get("status")
        if not payload.get("chat_thread") or new_status == TicketStatus.REOPENED.value:
            return
        text = (
            f"Ticket #{payload.get('ticket_id')} moved from {_label(payload.get('previous_status'))} "
            f"to {_label(new_status)}."
        )
        await self._post_event_message(payload, text, ledger)

    async def deliver_tat_set(self, payload: Mapping[str, Any], ledger: DeliveryLedger) -> None:
        ticket_id = payload.get("ticket_id")
        tat = payload.get("tat")
        due = payload.get("due_at") or "-"
        if payload.get("extended"):
            heading = "TAT Extended"
        elif payload.get("in_progress"):
            heading = "TAT Set & Ticket In Progress"
        else:
            heading = "TAT Updated"

        recipient = payload.get("recipient_email")
        if self._email is not None and recipient:
            body = f"The expected resolution time for your ticket #{ticket_id} is {tat} (due {due})."
            thread = payload.get("email_thread") or {}
            subject = threaded_subject(f"Ticket #{ticket_id} - {heading}", _email_thread(thread))
            await self._send_event_email(
                ledger, to=str(recipient), subject=subject, body=body, in_reply_to=thread.get("message_id")
            )

        if payload.get("chat_thread"):
            await self._post_event_message(payload, f"*{heading}*\nTurnaround Time: *{tat}*\nDue: {due}", ledger)

    async def deliver_reassigned(self, payload: Mapping[str, Any], ledger: DeliveryLedger) -> None:
        ticket_id = payload.get("ticket_id")
        assignee = payload.get("assignee_name")
        if assignee:
            text = f"*Ticket Reassigned*\nTicket #{ticket_id} has been reassigned to {assignee}."
        else:
            text = f"*Ticket Unassigned*\nTicket #{ticket_id} is now unassigned."

        recipient = payload.get("recipient_email")
        if self._email is not None and recipient:
            thread = payload.get("email_thread") or {}
            subject = threaded_subject(f"Ticket #{ticket_id} Reassigned", _email_thread(thread))
            body = f"Your ticket #{ticket_id} will now be handled by {assignee or 'the helpdesk team'}."
            await self._send_event_email(
                ledger, to=str(recipient), subject=subject, body=body, in_reply_to=thread.get("message_id")
            )

        if payload.get("chat_thread"):
            await self._post_event_message(payload, text, ledger)

    async def _send_event_email(
        self, ledger: DeliveryLedger, *, to: str, subject: str, body: str, in_reply_to: str | None = None
    ) -> None:
        email = self._email
        if email is None:
            return
        sent = await ledger.once(
            "email", lambda: email.send(to=to, subject=subject, body=body, in_reply_to=in_reply_to)
        )
        if sent:
            self._sent.inc(labels={"channel": "email"})

    async def _post_event_message(self, payload: Mapping[str, Any], text: str, ledger: DeliveryLedger) -> None:
        chat = self._chat
        if chat is None or not chat.can_post:
            return
        thread = payload.get("chat_thread") or {}
        channel = thread.get("channel") or chat.channel_for(payload.get("category"))
        if not channel:
            return
        sent = await ledger.once("chat", lambda: chat.post_message(text, channel=channel, thread_ts=thread.get("ts")))
        if sent:
            self._sent.inc(labels={"channel": "slack_thread" if thread.get("ts") else "slack"})

    async def _attempt(self, channel: str, ticket_id: int, send: Callable[[], Awaitable[Any]]) -> bool:
        try:
            await send()
        except Exception:
            self._failures.inc(labels={"channel": channel})
            logger.exception("Failed to send %s notification for ticket %s", channel, ticket_id)
            return False
        self._sent.inc(labels={"channel": channel})
        return True
