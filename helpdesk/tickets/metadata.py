"""Structured view of the ticket ``metadata`` JSON document.

The column is stored as plain JSON so older rows and unknown keys survive.
:class:`TicketMetadata` parses a stored document, migrates legacy camelCase
keys, and serialises back to the current ``schema_version``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from helpdesk.security.roles import Role

SCHEMA_VERSION = 3


def _millis_to_seconds(value: Any) -> int:
    return _as_int(value) // 1000


# legacy key -> (sub-document, key, converter)
_LEGACY_KEYS: dict[str, tuple[str | None, str, Callable[[Any], Any] | None]] = {
    "slackMessageTs": ("chat_thread", "ts", None),
    "slackChannel": ("chat_thread", "channel", None),
    "originalEmailMessageId": ("email_thread", "message_id", None),
    "originalEmailSubject": ("email_thread", "subject", None),
    "tatDate": ("tat", "due_at", None),
    "tatSetAt": ("tat", "set_at", None),
    "tatSetBy": ("tat", "set_by", None),
    "tatPauseStart": ("tat", "pause_started_at", None),
    "tatPausedDuration": ("tat", "paused_seconds", _millis_to_seconds),
    "tatExtensions": ("tat", "extensions", None),
    "forwardCount": (None, "forward_count", None),
    "reopenCount": (None, "reopen_count", None),
}

_SECTIONS = ("tat", "chat_thread", "email_thread", "rating")

_KNOWN_KEYS = frozenset(
    {
        "schema_version",
        "comments",
        "resolved_at",
        "reopened_at",
        "reopen_count",
        "forward_count",
        "forwarded_at",
        *_SECTIONS,
    }
)


class CommentSource(str, Enum):
    STUDENT_PORTAL = "student_portal"
    COMMITTEE_PORTAL = "committee_portal"
    ADMIN_DASHBOARD = "admin_dashboard"

    @classmethod
    def for_role(cls, role: Role) -> CommentSource:
        if role is Role.STUDENT:
            return cls.STUDENT_PORTAL
        if role is Role.COMMITTEE:
            return cls.COMMITTEE_PORTAL
        return cls.ADMIN_DASHBOARD


class CommentType(str, Enum):
    STUDENT_VISIBLE = "student_visible"
    INTERNAL_NOTE = "internal_note"
    SUPER_ADMIN_NOTE = "super_admin_note"

    @classmethod
    def parse(cls, value: str | None) -> CommentType | None:
        if value is None:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_TAT_PATTERN = re.compile(r"(\d+)\s*(hours?|days?|weeks?|months?)")
_TAT_UNITS = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
}


def parse_tat(text: str) -> timedelta | None:
    """Turn ``"48 hours"`` or ``"2 weeks"`` into a duration; ``None`` if unreadable."""

    match = _TAT_PATTERN.search(text.strip().lower())
    if match is None:
        return None
    amount = int(match.group(1))
    if amount <= 0:
        return None
    return _TAT_UNITS[match.group(2).rstrip("s")] * amount


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return max(int(value), 0)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


@dataclass(frozen=True, slots=True)
class Comment:
    """A single append-only comment."""

    text: str
    author: str
    created_at: datetime
    source: CommentSource
    type: CommentType

    @property
    def is_internal(self) -> bool:
        return self.type is not CommentType.STUDENT_VISIBLE

    def visible_to(self, role: Role) -> bool:
        if role is Role.SUPER_ADMIN:
            return True
        if role is Role.ADMIN:
            return self.type is not CommentType.SUPER_ADMIN_NOTE
        return self.type is CommentType.STUDENT_VISIBLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "author": self.author,
            "created_at": self.created_at.isoformat(),
            "source": self.source.value,
            "type": self.type.value,
            "is_internal": self.is_internal,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> Comment:
        comment_type = CommentType.parse(raw.get("type") or raw.get("commentType"))
        if comment_type is None:
            internal = bool(raw.get("is_internal", raw.get("isInternal", False)))
            comment_type = CommentType.INTERNAL_NOTE if internal else CommentType.STUDENT_VISIBLE
        try:
            source = CommentSource(str(raw.get("source") or CommentSource.ADMIN_DASHBOARD.value))
        except ValueError:
            source = CommentSource.ADMIN_DASHBOARD
        created_at = parse_timestamp(raw.get("created_at") or raw.get("createdAt"))
        return cls(
            text=str(raw.get("text") or ""),
            author=str(raw.get("author") or "Unknown"),
            created_at=created_at or datetime.fromtimestamp(0, tz=timezone.utc),
            source=source,
            type=comment_type,
        )


@dataclass(frozen=True, slots=True)
class TatExtension:
    """One change of an already committed turn-around time."""

    previous_label: str | None
    label: str
    previous_due_at: datetime | None
    due_at: datetime | None
    extended_at: datetime | None
    extended_by: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous_label": self.previous_label,
            "label": self.label,
            "previous_due_at": _format_timestamp(self.previous_due_at),
            "due_at": _format_timestamp(self.due_at),
            "extended_at": _format_timestamp(self.extended_at),
            "extended_by": self.extended_by,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> TatExtension:
        return cls(
            previous_label=_as_str(raw.get("previous_label", raw.get("previousTAT"))),
            label=str(raw.get("label", raw.get("newTAT")) or ""),
            previous_due_at=parse_timestamp(raw.get("previous_due_at", raw.get("previousTATDate"))),
            due_at=parse_timestamp(raw.get("due_at", raw.get("newTATDate"))),
            extended_at=parse_timestamp(raw.get("extended_at", raw.get("extendedAt"))),
            extended_by=_as_str(raw.get("extended_by", raw.get("extendedBy"))),
        )


@dataclass(frozen=True, slots=True)
class TatState:
    """Turn-around-time bookkeeping.

    ``label`` is the human text an admin committed to ("48 hours"); it stays
    ``None`` while the ticket only carries the default due date seeded at
    creation. Time spent paused is added to ``due_at`` when the pause ends.
    """

    due_at: datetime | None = None
    set_at: datetime | None = None
    set_by: str | None = None
    pause_started_at: datetime | None = None
    paused_seconds: int = 0
    label: str | None = None
    extensions: tuple[TatExtension, ...] = ()

    @property
    def is_paused(self) -> bool:
        return self.pause_started_at is not None

    def pause(self, now: datetime) -> TatState:
        if self.is_paused:
            return self
        return replace(self, pause_started_at=now)

    def resume(self, now: datetime) -> TatState:
        if self.pause_started_at is None:
            return self
        elapsed = max(int((now - self.pause_started_at).total_seconds()), 0)
        due_at = self.due_at + timedelta(seconds=elapsed) if self.due_at is not None else None
        return replace(self, due_at=due_at, pause_started_at=None, paused_seconds=self.paused_seconds + elapsed)

    def commit(self, label: str, due_at: datetime, *, by: str, now: datetime) -> TatState:
        """Set a new committed TAT, recording an extension when one was already set.

        A paused clock restarts its pause at ``now`` so the new due date only
        moves by time paused after it was set.
        """

        state = self.resume(now).pause(now) if self.is_paused else self
        extensions = state.extensions
        if self.label is not None:
            extensions = (
                *extensions,
                TatExtension(
                    previous_label=self.label,
                    label=label,
                    previous_due_at=self.due_at,
                    due_at=due_at,
                    extended_at=now,
                    extended_by=by,
                ),
            )
        return replace(state, label=label, due_at=due_at, set_at=now, set_by=by, extensions=extensions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "due_at": _format_timestamp(self.due_at),
            "set_at": _format_timestamp(self.set_at),
            "set_by": self.set_by,
            "pause_started_at": _format_timestamp(self.pause_started_at),
            "paused_seconds": self.paused_seconds,
            "extensions": [extension.to_dict() for extension in self.extensions],
        }

    @classmethod
    def from_dict(cls, raw: Any) -> TatState:
        if not isinstance(raw, Mapping):
            return cls()
        extensions = raw.get("extensions")
        if not isinstance(extensions, list):
            extensions = []
        return cls(
            due_at=parse_timestamp(raw.get("due_at")),
            set_at=parse_timestamp(raw.get("set_at")),
            set_by=_as_str(raw.get("set_by")),
            pause_started_at=parse_timestamp(raw.get("pause_started_at")),
            paused_seconds=_as_int(raw.get("paused_seconds")),
            label=_as_str(raw.get("label")),
            extensions=tuple(TatExtension.from_dict(item) for item in extensions if isinstance(item, Mapping)),
        )


@dataclass(frozen=True, slots=True)
class TicketRating:
    score: int
    rated_at: datetime
    feedback: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "rated_at": self.rated_at.isoformat(), "feedback": self.feedback}

    @classmethod
    def from_dict(cls, raw: Any) -> TicketRating | None:
        if not isinstance(raw, Mapping):
            return None
        score = _as_int(raw.get("score"))
        rated_at = parse_timestamp(raw.get("rated_at"))
        if not 1 <= score <= 5 or rated_at is None:
            return None
        return cls(score=score, rated_at=rated_at, feedback=_as_str(raw.get("feedback")))


@dataclass(frozen=True, slots=True)
class ChatThread:
    ts: str
    channel: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"ts": self.ts, "channel": self.channel}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ChatThread | None:
        ts = _as_str(raw.get("ts"))
        return cls(ts=ts, channel=_as_str(raw.get("channel"))) if ts else None


@dataclass(frozen=True, slots=True)
class EmailThread:
    message_id: str
    subject: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"message_id": self.message_id, "subject": self.subject}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> EmailThread | None:
        message_id = _as_str(raw.get("message_id"))
        return cls(message_id=message_id, subject=_as_str(raw.get("subject"))) if message_id else None


@dataclass(frozen=True, slots=True)
class TicketMetadata:
    """Immutable, versioned ticket metadata document."""

    comments: tuple[Comment, ...] = ()
    resolved_at: datetime | None = None
    reopened_at: datetime | None = None
    reopen_count: int = 0
    forward_count: int = 0
    forwarded_at: datetime | None = None
    tat: TatState = field(default_factory=TatState)
    chat_thread: ChatThread | None = None
    email_thread: EmailThread | None = None
    rating: TicketRating | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Mapping[str, Any] | None) -> TicketMetadata:
        data = _migrate_legacy_keys(dict(document or {}))
        chat_raw = data.get("chat_thread")
        email_raw = data.get("email_thread")
        comments = data.get("comments")
        if not isinstance(comments, list):
            comments = []
        return cls(
            comments=tuple(Comment.from_dict(item) for item in comments if isinstance(item, Mapping)),
            resolved_at=parse_timestamp(data.get("resolved_at")),
            reopened_at=parse_timestamp(data.get("reopened_at")),
            reopen_count=_as_int(data.get("reopen_count")),
            forward_count=_as_int(data.get("forward_count")),
            forwarded_at=parse_timestamp(data.get("forwarded_at")),
            tat=TatState.from_dict(data.get("tat")),
            chat_thread=ChatThread.from_dict(chat_raw) if isinstance(chat_raw, Mapping) else None,
            email_thread=EmailThread.from_dict(email_raw) if isinstance(email_raw, Mapping) else None,
            rating=TicketRating.from_dict(data.get("rating")),
            extra={key: value for key, value in data.items() if key not in _KNOWN_KEYS},
        )

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = dict(self.extra)
        document.update(
            {
                "schema_version": SCHEMA_VERSION,
                "comments": [comment.to_dict() for comment in self.comments],
                "resolved_at": _format_timestamp(self.resolved_at),
                "reopened_at": _format_timestamp(self.reopened_at),
                "reopen_count": self.reopen_count,
                "forward_count": self.forward_count,
                "forwarded_at": _format_timestamp(self.forwarded_at),
                "tat": self.tat.to_dict(),
                "chat_thread": self.chat_thread.to_dict() if self.chat_thread else None,
                "email_thread": self.email_thread.to_dict() if self.email_thread else None,
                "rating": self.rating.to_dict() if self.rating else None,
            }
        )
        return document

    def with_comment(self, comment: Comment) -> TicketMetadata:
        return replace(self, comments=(*self.comments, comment))

    def comments_visible_to(self, role: Role) -> list[Comment]:
        return [comment for comment in self.comments if comment.visible_to(role)]

    def last_activity_at(self) -> datetime | None:
        stamps = [comment.created_at for comment in self.comments]
        return max(stamps) if stamps else None

    def for_viewer(self, role: Role) -> dict[str, Any]:
        """Serialise the document with comments filtered for ``role``."""

        document = self.to_document()
        document["comments"] = [comment.to_dict() for comment in self.comments_visible_to(role)]
        return document


def _migrate_legacy_keys(data: dict[str, Any]) -> dict[str, Any]:
    # a bare string TAT is the label an admin typed, e.g. "48 hours"
    if isinstance(data.get("tat"), str):
        data["tat"] = {"label": data["tat"]}
    for section in _SECTIONS:
        value = data.get(section)
        if value is not None and not isinstance(value, Mapping):
            data[f"legacy_{section}"] = data.pop(section)

    for legacy, (section, key, convert) in _LEGACY_KEYS.items():
        if legacy not in data:
            continue
        value = data.pop(legacy)
        if convert is not None:
            value = convert(value)
        if section is None:
            data.setdefault(key, value)
            continue
        target = data.get(section)
        target = dict(target) if isinstance(target, Mapping) else {}
        target.setdefault(key, value)
        data[section] = target
    return data


def new_comment(
    text: str,
    *,
    author: str,
    role: Role,
    comment_type: CommentType,
    now: datetime,
) -> Comment:
    return Comment(
        text=text,
        author=author,
        created_at=now,
        source=CommentSource.for_role(role),
        type=comment_type,
    )
