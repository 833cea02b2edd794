"""Scheduled housekeeping: mention retention purge and unfurl refresh sweep."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, Optional

from .config import HousekeepingConfig
from .services.mention_service import MentionService
from .services.unfurl_service import UnfurlService

logger = logging.getLogger(__name__)


async def purge_expired_mentions(
    mention_service: MentionService, retention_days: int, now: Optional[datetime] = None
) -> int:
    """Delete mentions older than the retention window.

    Returns:
        Number of deleted mentions.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=retention_days)
    deleted = await mention_service.purge_older_than(cutoff)
    logger.info("Removed %d mention(s) created before %s in housekeeping job", deleted, cutoff)
    return deleted


async def refresh_all_unfurls(mention_service: MentionService, unfurl_service: UnfurlService) -> int:
    """Refresh the unfurl of every tracked mention, one at a time.

    Returns:
        Number of unfurls that were pushed.
    """
    logger.debug("Updating unfurls on mentions job...")
    mentions = await mention_service.find_all_mentions()

    refreshed = 0
    for mention in mentions:
        try:
            if await unfurl_service.reconcile(mention):
                refreshed += 1
        except Exception as e:
            logger.error(
                "Cannot update unfurl for mention %r in update unfurls job: %s",
                mention,
                e,
                exc_info=True,
            )

    logger.info("Refreshed %d of %d unfurl(s) in update unfurls job", refreshed, len(mentions))
    return refreshed


def next_run_time(now: datetime, hours: Iterable[int], weekdays: Iterable[int]) -> datetime:
    """
    Next full hour strictly after ``now`` matching the given hours and weekdays.

    Args:
        now: Reference time, its timezone is kept.
        hours: Allowed hours of the day (0-23).
        weekdays: Allowed weekdays, 0 is Monday.

    Raises:
        ValueError: If ``hours`` or ``weekdays`` is empty.
    """
    hours = set(hours)
    weekdays = set(weekdays)
    if not hours or not weekdays:
        raise ValueError("At least one hour and one weekday are required")

    candidate = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    # Any schedule repeats within a week
    for _ in range(7 * 24):
        if candidate.hour in hours and candidate.weekday() in weekdays:
            return candidate
        candidate += timedelta(hours=1)
    raise ValueError(f"No run time matches hours={sorted(hours)} weekdays={sorted(weekdays)}")


class Scheduler:
    """Runs the housekeeping jobs on their own schedules.

    Jobs do not coordinate with live event handlers; every mention update
    is independently idempotent.
    """

    def __init__(
        self,
        config: HousekeepingConfig,
        mention_service: MentionService,
        unfurl_service: UnfurlService,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.mention_service = mention_service
        self.unfurl_service = unfurl_service
        self.clock = clock

    async def purge(self) -> int:
        return await purge_expired_mentions(self.mention_service, self.config.retention_days)

    async def refresh(self) -> int:
        return await refresh_all_unfurls(self.mention_service, self.unfurl_service)

    async def _run_forever(
        self,
        name: str,
        job: Callable[[], Awaitable[int]],
        hours: Iterable[int],
        weekdays: Iterable[int],
    ) -> None:
        hours = list(hours)
        weekdays = list(weekdays)
        while True:
            now = self.clock()
            run_at = next_run_time(now, hours, weekdays)
            logger.debug("Next %s job run at %s", name, run_at)
            await asyncio.sleep(max((run_at - now).total_seconds(), 0))
            try:
                await job()
            except Exception as e:
                logger.error("%s job failed: %s", name, e, exc_info=True)

    async def run(self) -> None:
        """Run both jobs until cancelled."""
        logger.info(
            "Registered scheduled jobs: housekeeping daily at %02d:00, "
            "unfurl refresh at hours %s on weekdays %s",
            self.config.purge_hour,
            self.config.refresh_hours,
            self.config.refresh_weekdays,
        )
        await asyncio.gather(
            self._run_forever("housekeeping", self.purge, [self.config.purge_hour], range(7)),
            self._run_forever(
                "update unfurls",
                self.refresh,
                self.config.refresh_hours,
                self.config.refresh_weekdays,
            ),
        )
