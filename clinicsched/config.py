from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import time, timedelta

from dotenv import load_dotenv

from clinicsched.domain import InvalidConfigError
from clinicsched.slot_generator import WEEKDAYS, WorkingHours


def _parse_working_days(raw: str) -> tuple[int, ...]:
    # WORKING_DAYS is a comma-separated list of weekday numbers, Monday is 0.
    # Examples:
    #   WORKING_DAYS=0,1,2,3,4
    #   WORKING_DAYS=1, 3,5
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[int] = set()
    result: list[int] = []
    for p in parts:
        try:
            day = int(p)
        except ValueError as e:
            raise InvalidConfigError(f"Invalid WORKING_DAYS value: {p!r}. Expected a weekday number 0-6.") from e

        if day not in range(7):
            raise InvalidConfigError(f"Invalid WORKING_DAYS value: {p!r}. Expected a weekday number 0-6.")

        if day in seen:
            continue
        seen.add(day)
        result.append(day)

    if not result:
        raise InvalidConfigError("WORKING_DAYS is empty. Provide at least one weekday.")

    return tuple(sorted(result))


def _parse_time(name: str, raw: str) -> time:
    try:
        hours, minutes = raw.strip().split(":")
        return time(int(hours), int(minutes))
    except ValueError as e:
        raise InvalidConfigError(f"Invalid {name} value: {raw!r}. Expected HH:MM.") from e


def _int_env(name: str, default: int, minimum: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as e:
        raise InvalidConfigError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e
    if value < minimum:
        raise InvalidConfigError(f"{name} must be >= {minimum}")
    return value


@dataclass(frozen=True)
class Settings:
    doctor_name: str = "Dr. Smith"
    slot_duration_minutes: int = 30

    working_hours_start: time = time(9, 0)
    working_hours_end: time = time(17, 0)
    break_start: time | None = None
    break_end: time | None = None
    working_days: tuple[int, ...] = WEEKDAYS

    # How many days ahead the menu generates slots for.
    horizon_days: int = 5
    default_flexibility_minutes: int = 60

    # Where the calendar and requests are kept between runs
    state_file: str = "schedule_state.json"
    # How many times a failing state file replace is attempted.
    state_save_retry_attempts: int = 3

    log_level: str = "INFO"

    @property
    def slot_duration(self) -> timedelta:
        return timedelta(minutes=self.slot_duration_minutes)

    @property
    def default_flexibility(self) -> timedelta:
        return timedelta(minutes=self.default_flexibility_minutes)

    @property
    def working_hours(self) -> WorkingHours:
        return WorkingHours(
            start=self.working_hours_start,
            end=self.working_hours_end,
            break_start=self.break_start,
            break_end=self.break_end,
            working_days=self.working_days,
        )


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    break_start_raw = os.getenv("BREAK_START", "").strip()
    break_end_raw = os.getenv("BREAK_END", "").strip()
    if bool(break_start_raw) != bool(break_end_raw):
        raise InvalidConfigError("BREAK_START and BREAK_END must be set together")

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise InvalidConfigError(f"Invalid LOG_LEVEL value: {log_level!r}")

    doctor_name = os.getenv("DOCTOR_NAME", "Dr. Smith").strip()
    if not doctor_name:
        raise InvalidConfigError("DOCTOR_NAME cannot be empty")

    settings = Settings(
        doctor_name=doctor_name,
        slot_duration_minutes=_int_env("SLOT_DURATION_MINUTES", 30, minimum=1),
        working_hours_start=_parse_time("WORKING_HOURS_START", os.getenv("WORKING_HOURS_START", "09:00")),
        working_hours_end=_parse_time("WORKING_HOURS_END", os.getenv("WORKING_HOURS_END", "17:00")),
        break_start=_parse_time("BREAK_START", break_start_raw) if break_start_raw else None,
        break_end=_parse_time("BREAK_END", break_end_raw) if break_end_raw else None,
        working_days=_parse_working_days(os.getenv("WORKING_DAYS", "0,1,2,3,4")),
        horizon_days=_int_env("HORIZON_DAYS", 5, minimum=1),
        default_flexibility_minutes=_int_env("DEFAULT_FLEXIBILITY_MINUTES", 60, minimum=0),
        state_file=os.getenv("STATE_FILE", "schedule_state.json"),
        state_save_retry_attempts=_int_env("STATE_SAVE_RETRY_ATTEMPTS", 3, minimum=1),
        log_level=log_level,
    )

    # Catch bad hours at startup rather than at the first slot generation.
    settings.working_hours.validate()
    return settings
