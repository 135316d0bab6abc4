from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from typing import Callable

from clinicsched.batch import BatchReport, process_all
from clinicsched.calendar import Calendar
from clinicsched.config import Settings
from clinicsched.demo import run_demo
from clinicsched.domain import AppointmentRequest, Confirmed, Priority, SchedulingError
from clinicsched.slot_generator import WorkingHours, generate_into
from clinicsched.state_file import SessionState

logger = logging.getLogger(__name__)

MAX_SLOTS_SHOWN = 20

MENU = """
--- Main Menu ---
1. Setup doctor calendar
2. Generate time slots
3. Submit appointment request
4. Process all requests
5. View available slots
6. View confirmed appointments
7. Cancel appointment
8. Run demo
9. Exit
--------------------"""

# Menu numbering for priorities, lowest urgency first.
PRIORITY_CHOICES = {1: Priority.ROUTINE, 2: Priority.URGENT, 3: Priority.EMERGENCY}


def format_report(report: BatchReport, state: SessionState) -> list[str]:
    lines = [
        "--- Scheduling Results ---",
        f"  Total requests: {report.total}",
        f"  Confirmed: {len(report.confirmed)}",
        f"  Rejected: {len(report.rejected)}",
        f"  Success rate: {report.success_rate:.1f}%",
    ]
    for request_id, outcome in report.entries:
        request = state.scheduler.get_request(request_id)
        if isinstance(outcome, Confirmed):
            shift = ""
            if outcome.offset_applied:
                minutes = int(outcome.offset_applied.total_seconds() // 60)
                shift = f" (moved {minutes:+d} min)"
            lines.append(
                f"  [{request.priority.label:9}] {request.patient_name:15} -> {outcome.start:%Y-%m-%d %H:%M}{shift}"
            )
        else:
            lines.append(f"  [{request.priority.label:9}] {request.patient_name:15} -> rejected ({outcome.reason.value})")
    return lines


class AppointmentMenu:
    """Interactive 1-9 menu over one doctor's calendar."""

    def __init__(
        self,
        settings: Settings,
        state: SessionState | None = None,
        input_func: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
    ):
        self.settings = settings
        self.state = state
        self._input = input_func
        self._output = output
        self.running = True

        self._actions: dict[int, Callable[[], None]] = {
            1: self.setup_calendar,
            2: self.generate_slots,
            3: self.submit_request,
            4: self.process_requests,
            5: self.view_available_slots,
            6: self.view_appointments,
            7: self.cancel_appointment,
            8: self.demo,
            9: self.exit,
        }

    def run(self) -> int:
        self._output("=" * 60)
        self._output("       APPOINTMENT SCHEDULING SYSTEM")
        self._output("=" * 60)

        while self.running:
            self._output(MENU)
            try:
                choice = self._ask_int("Enter choice", 9)
            except EOFError:
                self.exit()
                break

            action = self._actions.get(choice)
            if action is None:
                self._output("Invalid choice")
                continue

            try:
                action()
            except SchedulingError as e:
                logger.warning("Menu action %d failed (%s: %s)", choice, type(e).__name__, e)
                self._output(f"\nError: {e}")
            except EOFError:
                self.exit()
        return 0

    def setup_calendar(self) -> None:
        self._output("\n--- Setup Doctor Calendar ---")
        doctor_name = self._ask("Doctor name", self.settings.doctor_name)
        minutes = self._ask_int("Default appointment duration (minutes)", self.settings.slot_duration_minutes)

        calendar = Calendar(doctor_name, timedelta(minutes=minutes))
        self.state = SessionState(calendar=calendar)
        self._output(f"\nCalendar created for {doctor_name}")
        self._output(f"Default slot duration: {minutes} minutes")

    def generate_slots(self) -> None:
        state = self._require_state()
        self._output("\n--- Generate Time Slots ---")
        days = self._ask_int("Number of days", self.settings.horizon_days)
        start = self._ask_time("Working hours start", self.settings.working_hours_start)
        end = self._ask_time("Working hours end", self.settings.working_hours_end)

        break_start = self.settings.break_start or time(12, 0)
        break_end = self.settings.break_end or time(13, 0)
        with_break = self._ask("Include break? (y/n)", "y").lower() == "y"
        if with_break:
            self._output(f"Break: {break_start:%H:%M} - {break_end:%H:%M}")

        hours = WorkingHours(
            start=start,
            end=end,
            break_start=break_start if with_break else None,
            break_end=break_end if with_break else None,
            working_days=self.settings.working_days,
        )
        first_day = _tomorrow()
        slots = generate_into(state.calendar, first_day, first_day + timedelta(days=days - 1), hours)
        self._output(f"\nGenerated {len(slots)} time slots")

    def submit_request(self) -> None:
        state = self._require_state()
        self._output("\n--- Submit Appointment Request ---")
        patient_name = self._ask("Patient name")
        contact = self._ask("Patient contact (phone/email)")
        reason = self._ask("Reason for appointment")

        self._output("\nPriority levels:\n  1. Routine\n  2. Urgent\n  3. Emergency")
        priority = PRIORITY_CHOICES.get(self._ask_int("Select priority", 1), Priority.ROUTINE)

        self._output("\nPreferred time (tomorrow)")
        hour = self._ask_int("Hour (0-23)", 10)
        minute = self._ask_int("Minute (0-59)", 0)
        try:
            desired = datetime.combine(_tomorrow(), time(hour, minute))
        except ValueError:
            self._output("Please enter a valid time")
            return
        flexibility = self._ask_int("Time flexibility (minutes)", self.settings.default_flexibility_minutes)

        request = state.queue.submit(
            AppointmentRequest(
                patient_name=patient_name,
                patient_contact=contact,
                reason=reason,
                priority=priority,
                desired_start=desired,
                flexibility=timedelta(minutes=flexibility),
                doctor_id=state.calendar.doctor_id,
            )
        )
        self._output(f"\nRequest {request.request_id} submitted for {patient_name}")
        self._output(f"Priority: {priority.label}")
        self._output(f"Preferred time: {desired:%Y-%m-%d %H:%M}")
        self._output(f"Pending requests in queue: {len(state.queue)}")

    def process_requests(self) -> None:
        state = self._require_state()
        if not state.queue:
            self._output("\nNo pending requests to process")
            return

        self._output(f"\n--- Processing {len(state.queue)} requests ---")
        report = process_all(state.queue, state.calendar, state.scheduler)
        for line in format_report(report, state):
            self._output(line)

    def view_available_slots(self) -> None:
        state = self._require_state()
        slots = state.calendar.free_slots()
        if not slots:
            self._output("\nNo available time slots")
            return

        self._output(f"\n--- Available Time Slots ({len(slots)} total) ---")
        current_day: date | None = None
        for i, slot in enumerate(slots):
            if i >= MAX_SLOTS_SHOWN:
                self._output(f"\n... and {len(slots) - MAX_SLOTS_SHOWN} more slots")
                break
            if slot.start.date() != current_day:
                current_day = slot.start.date()
                self._output(f"\n{current_day:%A, %Y-%m-%d}:")
            self._output(f"  {slot.start:%H:%M} - {slot.end:%H:%M}")

    def view_appointments(self) -> None:
        state = self._require_state()
        booked = state.calendar.confirmed_slots()
        if not booked:
            self._output("\nNo confirmed appointments")
            return

        self._output(f"\n--- Confirmed Appointments ({len(booked)}) ---")
        current_day: date | None = None
        for slot in booked:
            request = state.scheduler.get_request(slot.occupant)
            if slot.start.date() != current_day:
                current_day = slot.start.date()
                self._output(f"\n{current_day:%A, %Y-%m-%d}:")
            self._output(
                f"  {slot.start:%H:%M} - {request.patient_name} ({request.priority.label}) - {request.reason}"
            )
            self._output(f"    ID: {request.request_id}")

    def cancel_appointment(self) -> None:
        state = self._require_state()
        booked = state.calendar.confirmed_slots()
        if not booked:
            self._output("\nNo appointments to cancel")
            return

        self._output("\n--- Cancel Appointment ---\n\nCurrent appointments:")
        for i, slot in enumerate(booked, start=1):
            request = state.scheduler.get_request(slot.occupant)
            self._output(f"  {i}. {request.patient_name} - {slot.start:%Y-%m-%d %H:%M}")

        choice = self._ask_int("Select appointment to cancel (0 to go back)", 0)
        if choice == 0:
            return
        if not 1 <= choice <= len(booked):
            self._output("Invalid choice")
            return

        request_id = booked[choice - 1].occupant
        state.scheduler.cancel(request_id, state.calendar)
        self._output(f"\nAppointment for {state.scheduler.get_request(request_id).patient_name} cancelled")
        self._output("Time slot is now available again")

    def demo(self) -> None:
        self._output("\n--- Running Demo ---")
        state, report = run_demo()
        self._output(f"Created calendar with {len(state.calendar)} slots")
        self._output(f"Submitted {report.total} appointment requests")
        for line in format_report(report, state):
            self._output(line)
        self.state = state

    def exit(self) -> None:
        self.running = False
        self._output("\nGoodbye!")

    def _require_state(self) -> SessionState:
        if self.state is None:
            raise SchedulingError("Please setup a calendar first (option 1)")
        return self.state

    def _ask(self, prompt: str, default: str | None = None) -> str:
        shown = f"{prompt} [{default}]: " if default is not None else f"{prompt}: "
        value = self._input(shown).strip()
        return value or (default or "")

    def _ask_int(self, prompt: str, default: int) -> int:
        while True:
            raw = self._ask(prompt, str(default))
            try:
                return int(raw)
            except ValueError:
                self._output("Please enter a valid number")

    def _ask_time(self, prompt: str, default: time) -> time:
        while True:
            raw = self._ask(prompt, f"{default:%H:%M}")
            try:
                hours, minutes = raw.split(":") if ":" in raw else (raw, "0")
                return time(int(hours), int(minutes))
            except ValueError:
                self._output("Please enter a time as HH:MM")


def _tomorrow() -> date:
    return date.today() + timedelta(days=1)
