from __future__ import annotations

import asyncio
import html
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Protocol

import httpx

from .constants import LOGGER
from .email_relay import EmailMessage, EmailRelayClient

SHIFTS_PATH = "/api/shifts"
DEFAULT_HOURS_BEFORE_SHIFT = 24
DEFAULT_CHECK_INTERVAL_MINUTES = 60


def parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise RuntimeError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Signup:
    signup_id: int
    shift_id: int
    name: str
    email: str
    phone_number: str = ""
    num_people: int = 1

    @classmethod
    def from_payload(cls, payload: dict) -> "Signup":
        return cls(
            signup_id=int(payload.get("SignUpID", 0)),
            shift_id=int(payload.get("ShiftID", 0)),
            name=str(payload.get("Name", "")),
            email=str(payload.get("Email", "")),
            phone_number=str(payload.get("PhoneNumber") or ""),
            num_people=int(payload.get("NumPeople") or 1),
        )


@dataclass
class Shift:
    shift_id: int
    start_time: datetime
    end_time: datetime
    capacity: int = 0
    signups: list[Signup] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict) -> "Shift":
        return cls(
            shift_id=int(payload["ShiftID"]),
            start_time=parse_timestamp(payload.get("StartTime")),
            end_time=parse_timestamp(payload.get("EndTime")),
            capacity=int(payload.get("Capacity") or 0),
            signups=[Signup.from_payload(item) for item in payload.get("signups") or []],
        )


@dataclass
class Reminder:
    shift_id: int
    email: str
    name: str
    shift_date: datetime
    reminder_date: datetime
    sent: bool = False

    @property
    def key(self) -> tuple[int, str]:
        return (self.shift_id, self.email.lower())


class ReminderSender(Protocol):
    async def send_reminder(self, reminder: Reminder) -> None: ...


class EmailReminderSender:
    """Delivers reminders as plain messages through the email relay."""

    def __init__(self, relay: EmailRelayClient) -> None:
        self._relay = relay

    async def send_reminder(self, reminder: Reminder) -> None:
        when = reminder.shift_date.strftime("%A, %B %d at %H:%M %Z").strip()
        text = (
            f"Hi {reminder.name},\n\n"
            f"This is a reminder that you are signed up to volunteer on {when}.\n"
            "Thank you for helping out!"
        )
        body = (
            f"<p>Hi {html.escape(reminder.name)},</p>"
            f"<p>This is a reminder that you are signed up to volunteer on "
            f"<strong>{html.escape(when)}</strong>.</p>"
            "<p>Thank you for helping out!</p>"
        )
        await self._relay.send(
            EmailMessage(
                to=reminder.email,
                subject=f"Reminder: volunteer shift on {reminder.shift_date:%B %d}",
                html=body,
                text=text,
                type="reminder",
            )
        )


def http_shift_loader(
    client: httpx.AsyncClient, path: str = SHIFTS_PATH
) -> Callable[[], Awaitable[list[Shift]]]:
    async def load() -> list[Shift]:
        response = await client.get(path)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, list):
            raise RuntimeError("Shift listing must be a JSON array.")
        return [Shift.from_payload(item) for item in payload]

    return load


class ReminderScheduler:
    """Polling loop that re-derives reminders from current shifts and sends the due ones.

    Every cycle rebuilds the pending set from the loaded shifts. A reminder is
    generated for each signup whose shift has not started yet and becomes due
    ``hours_before_shift`` before the start. Sent reminders are remembered
    until their shift starts so they are not sent twice; a failed send stays
    pending for the next cycle.
    """

    def __init__(
        self,
        load_shifts: Callable[[], Awaitable[list[Shift]]],
        sender: ReminderSender,
        *,
        enabled: bool = True,
        hours_before_shift: float = DEFAULT_HOURS_BEFORE_SHIFT,
        check_interval_minutes: float = DEFAULT_CHECK_INTERVAL_MINUTES,
        clock=time.time,
        sleep=asyncio.sleep,
    ) -> None:
        self._load_shifts = load_shifts
        self._sender = sender
        self.enabled = enabled
        self.hours_before_shift = hours_before_shift
        self.check_interval_minutes = check_interval_minutes
        self._clock = clock
        self._sleep = sleep
        self._reminders: dict[tuple[int, str], Reminder] = {}
        self._task: asyncio.Task | None = None

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _reminder_for(self, shift: Shift, signup: Signup) -> Reminder:
        return Reminder(
            shift_id=shift.shift_id,
            email=signup.email,
            name=signup.name,
            shift_date=shift.start_time,
            reminder_date=shift.start_time - timedelta(hours=self.hours_before_shift),
        )

    # -- schedule --------------------------------------------------------------

    def generate_reminders(self, shifts: list[Shift]) -> list[Reminder]:
        if not self.enabled:
            LOGGER.info("Reminder generation skipped; reminders disabled")
            return []

        now = self._now()
        rebuilt: dict[tuple[int, str], Reminder] = {}
        for shift in shifts:
            if shift.start_time <= now:
                continue
            for signup in shift.signups:
                if not signup.email:
                    continue
                reminder = self._reminder_for(shift, signup)
                previous = self._reminders.get(reminder.key)
                if previous is not None and previous.sent and previous.shift_date == shift.start_time:
                    reminder = previous
                rebuilt.setdefault(reminder.key, reminder)

        self._reminders = rebuilt
        LOGGER.info(
            "Generated %s reminders, %s pending", len(rebuilt), len(self.pending_reminders())
        )
        return list(rebuilt.values())

    def schedule_reminder_for_signup(self, shift: Shift, signup: Signup) -> Reminder | None:
        if not self.enabled or shift.start_time <= self._now():
            return None
        reminder = self._reminder_for(shift, signup)
        previous = self._reminders.get(reminder.key)
        if previous is not None and previous.sent and previous.shift_date == shift.start_time:
            LOGGER.info("Reminder for %s on shift %s already sent", signup.email, shift.shift_id)
            return previous
        self._reminders[reminder.key] = reminder
        LOGGER.info("Scheduled reminder for %s on shift %s", signup.email, shift.shift_id)
        return reminder

    def remove_reminders_for_shift(self, shift_id: int) -> int:
        keys = [key for key in self._reminders if key[0] == shift_id]
        for key in keys:
            del self._reminders[key]
        LOGGER.info("Removed %s reminders for shift %s", len(keys), shift_id)
        return len(keys)

    def remove_reminders_for_signup(self, shift_id: int, email: str) -> bool:
        removed = self._reminders.pop((shift_id, email.lower()), None) is not None
        if removed:
            LOGGER.info("Removed reminder for %s on shift %s", email, shift_id)
        return removed

    def reminders(self) -> list[Reminder]:
        return list(self._reminders.values())

    def pending_reminders(self) -> list[Reminder]:
        return [reminder for reminder in self._reminders.values() if not reminder.sent]

    def due_reminders(self) -> list[Reminder]:
        now = self._now()
        return [
            reminder
            for reminder in self.pending_reminders()
            if reminder.reminder_date <= now < reminder.shift_date
        ]

    def clear_sent_reminders(self) -> int:
        """Forget sent reminders. Shifts still ahead will be reminded again."""
        sent = [key for key, reminder in self._reminders.items() if reminder.sent]
        for key in sent:
            del self._reminders[key]
        return len(sent)

    def statistics(self) -> dict:
        pending = self.pending_reminders()
        return {
            "total_scheduled": len(self._reminders),
            "pending_count": len(pending),
            "sent_count": len(self._reminders) - len(pending),
            "is_running": self.running,
            "config": {
                "enabled": self.enabled,
                "hours_before_shift": self.hours_before_shift,
                "check_interval_minutes": self.check_interval_minutes,
            },
        }

    # -- sending ---------------------------------------------------------------

    async def send_due_reminders(self) -> int:
        due = self.due_reminders()
        if not due:
            LOGGER.debug("No due reminders")
            return 0

        sent = 0
        for reminder in due:
            try:
                await self._sender.send_reminder(reminder)
            except (RuntimeError, httpx.HTTPError) as error:
                LOGGER.error(
                    "Reminder for %s on shift %s failed: %s",
                    reminder.email,
                    reminder.shift_id,
                    error,
                )
                continue
            reminder.sent = True
            sent += 1
        LOGGER.info("Sent %s of %s due reminders", sent, len(due))
        return sent

    async def run_once(self) -> int:
        if not self.enabled:
            return 0
        shifts = await self._load_shifts()
        self.generate_reminders(shifts)
        return await self.send_due_reminders()

    # -- lifecycle -------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            LOGGER.warning("Reminder scheduler is already running")
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        LOGGER.info(
            "Reminder scheduler started; checking every %s minutes", self.check_interval_minutes
        )

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        LOGGER.info("Reminder scheduler stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                LOGGER.exception("Reminder cycle failed")
            await self._sleep(self.check_interval_minutes * 60)
