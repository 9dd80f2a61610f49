"""Route modules exposed by the API package."""

from . import admin, committee_tags, cron, ping, tickets

__all__ = ["admin", "committee_tags", "cron", "ping", "tickets"]
