"""
Clinical Digest Sweeps

Scans observations carrying a clinical code for dates falling within an
upcoming window, and delivers one human-readable digest per sweep through
the notification dispatcher.

Presets:
- Expected delivery dates (EDD)
- Anniversaries (e.g. treatment start)
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum

import structlog

from careflow.collaborators import NotificationDispatcher
from careflow.models.base import start_of_day, utc_now
from careflow.models.clinical import Observation
from careflow.store.base import FilterOp, ResourceStore, SearchQuery

logger = structlog.get_logger(__name__)


class DigestMode(str, Enum):
    DATE = "date"
    ANNIVERSARY = "anniversary"


@dataclass
class DigestSweepConfig:
    """A digest sweep over observations with one code."""
    name: str
    title: str
    code: str
    category: str = "digest"
    window_days: int = 7
    mode: DigestMode = DigestMode.DATE


@dataclass
class DigestEntry:
    subject: str
    due: date
    years: int | None = None

    def describe(self) -> str:
        line = f"{self.subject}: {self.due.isoformat()}"
        if self.years is not None:
            line += f" ({self.years} year{'s' if self.years != 1 else ''})"
        return line


def edd_sweep(code: str, window_days: int = 7) -> DigestSweepConfig:
    return DigestSweepConfig(
        name="edd",
        title="Upcoming expected deliveries",
        code=code,
        category="edd",
        window_days=window_days,
    )


def anniversary_sweep(code: str, window_days: int = 7) -> DigestSweepConfig:
    return DigestSweepConfig(
        name="anniversary",
        title="Upcoming anniversaries",
        code=code,
        category="anniversary",
        window_days=window_days,
        mode=DigestMode.ANNIVERSARY,
    )


def next_anniversary(value: date, today: date) -> date:
    """First anniversary of ``value`` on or after ``today`` (Feb 29 falls on Feb 28)."""
    def in_year(year: int) -> date:
        try:
            return value.replace(year=year)
        except ValueError:
            return value.replace(year=year, day=28)

    candidate = in_year(today.year)
    if candidate < today:
        candidate = in_year(today.year + 1)
    return candidate


def _observed_date(observation: Observation) -> datetime | None:
    return observation.value_datetime or observation.effective_datetime


class DigestSweeper:
    """Builds and dispatches clinical digests."""

    def __init__(self, store: ResourceStore, dispatcher: NotificationDispatcher):
        self.store = store
        self.dispatcher = dispatcher

    async def collect(self, config: DigestSweepConfig, now: datetime | None = None) -> list[DigestEntry]:
        today = start_of_day(now or utc_now()).date()
        until = today + timedelta(days=config.window_days)

        query = SearchQuery().where("code", FilterOp.EQ, config.code)
        entries: list[DigestEntry] = []
        for observation in await self.store.search("Observation", query):
            observed = _observed_date(observation)
            if observed is None:
                continue

            subject = observation.subject.reference if observation.subject else observation.reference_value()
            observed_day = observed.date()

            if config.mode == DigestMode.ANNIVERSARY:
                due = next_anniversary(observed_day, today)
                years = due.year - observed_day.year
                if years > 0 and due <= until:
                    entries.append(DigestEntry(subject=subject, due=due, years=years))
            elif today <= observed_day <= until:
                entries.append(DigestEntry(subject=subject, due=observed_day))

        entries.sort(key=lambda e: (e.due, e.subject))
        return entries

    async def run(self, config: DigestSweepConfig, now: datetime | None = None) -> list[DigestEntry]:
        """Collect a digest and dispatch it when non-empty."""
        entries = await self.collect(config, now)
        if not entries:
            logger.debug("Digest empty", sweep=config.name)
            return entries

        description = "\n".join(entry.describe() for entry in entries)
        await self.dispatcher.show(
            title=f"{config.title} ({len(entries)})",
            description=description,
            category=config.category,
        )
        logger.info("Digest dispatched", sweep=config.name, entries=len(entries))
        return entries

    async def run_all(
        self,
        configs: list[DigestSweepConfig],
        now: datetime | None = None,
    ) -> dict[str, int]:
        return {config.name: len(await self.run(config, now)) for config in configs}
