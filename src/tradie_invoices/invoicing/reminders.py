"""Payment reminder scheduling."""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tradie_invoices.backend.records import ReminderSettings


class ReminderType(str, Enum):
    BEFORE_DUE = "before_due"
    ON_DUE = "on_due"
    AFTER_DUE = "after_due"
    MANUAL = "manual"


def days_past_due(due_date: date, today: date) -> int:
    """Whole days since ``due_date``; negative while the invoice is not yet due."""
    return (today - due_date).days


def reminder_due_today(
    settings: ReminderSettings, due_date: date, today: date
) -> ReminderType | None:
    """Return which automatic reminder, if any, falls on ``today``."""
    offset = days_past_due(due_date, today)
    if offset in settings.auto_remind_after_days:
        return ReminderType.AFTER_DUE
    if offset == 0 and settings.auto_remind_on_due:
        return ReminderType.ON_DUE
    if settings.auto_remind_before_days and offset == -settings.auto_remind_before_days:
        return ReminderType.BEFORE_DUE
    return None
