"""Metric definitions used across the application."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

STATUS_CHANGES_TOTAL = "helpdesk_ticket_status_changes_total"
ACCESS_DENIED_TOTAL = "helpdesk_access_denied_total"
NOTIFICATIONS_SENT_TOTAL = "helpdesk_notifications_sent_total"
NOTIFICATION_FAILURES_TOTAL = "helpdesk_notification_failures_total"
OUTBOX_PROCESSED_TOTAL = "helpdesk_outbox_events_processed_total"
OUTBOX_FAILURES_TOTAL = "helpdesk_outbox_event_failures_total"
TICKET_UPDATE_DURATION = "helpdesk_ticket_update_duration_seconds"
AUTO_ESCALATIONS_TOTAL = "helpdesk_auto_escalations_total"


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=STATUS_CHANGES_TOTAL,
        metric_type="counter",
        description="Effective ticket status changes, by target status.",
        label_names=("status",),
    ),
    MetricDefinition(
        name=ACCESS_DENIED_TOTAL,
        metric_type="counter",
        description="Requests rejected by the access gate, by operation.",
        label_names=("operation",),
    ),
    MetricDefinition(
        name=NOTIFICATIONS_SENT_TOTAL,
        metric_type="counter",
        description="Notifications delivered, by channel.",
        label_names=("channel",),
    ),
    MetricDefinition(
        name=NOTIFICATION_FAILURES_TOTAL,
        metric_type="counter",
        description="Notification deliveries that raised, by channel.",
        label_names=("channel",),
    ),
    MetricDefinition(
        name=OUTBOX_PROCESSED_TOTAL,
        metric_type="counter",
        description="Outbox events delivered, by event type.",
        label_names=("event_type",),
    ),
    MetricDefinition(
        name=OUTBOX_FAILURES_TOTAL,
        metric_type="counter",
        description="Outbox delivery attempts that failed, by event type.",
        label_names=("event_type",),
    ),
    MetricDefinition(
        name=AUTO_ESCALATIONS_TOTAL,
        metric_type="counter",
        description="Tickets escalated by the scheduled job, by triggering rule.",
        label_names=("rule",),
    ),
    MetricDefinition(
        name=TICKET_UPDATE_DURATION,
        metric_type="distribution",
        description="Duration of ticket mutations in seconds.",
        label_names=("operation",),
    ),
)
