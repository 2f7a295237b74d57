import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from rate_limit import RateLimiter


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class SchedulerManager:
    def __init__(self, rate_limiter: RateLimiter) -> None:
        settings = get_settings()
        self.rate_limiter = rate_limiter
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _sweep_rate_limits(self, source: str = "manual") -> int:
        removed = self.rate_limiter.sweep()
        logger.info(f"rate_limit_sweep: source={source} windows_removed={removed}")
        return removed

    def start(self) -> None:
        interval = max(int(self.rate_limiter.window_secs), 1)
        trigger = IntervalTrigger(seconds=interval)
        self.scheduler.add_job(
            self._sweep_rate_limits,
            trigger,
            args=["interval"],
            id="rate_limit_sweep",
            replace_existing=True,
            misfire_grace_time=interval,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with rate limit sweep every {interval}s")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
