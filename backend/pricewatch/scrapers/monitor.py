"""APScheduler-based price monitor.

The monitor periodically selects products that are due for a check,
scrapes them in bounded sub-batches, records prices and history through
the product store, and decides which notifications to raise:

1. target reached: new price <= target and the previous price was above it
2. price drop: change <= -(threshold * 100)
3. price increase: change >= threshold * 200

Only the first matching rule fires. At most one check cycle runs at a time;
a trigger that fires while a cycle is running is dropped.
"""

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from pricewatch.config import Settings
from pricewatch.core.exceptions import InvalidIntervalError, MonitorStateError
from pricewatch.models.product import Product
from pricewatch.scrapers.fetcher import SleepFunc
from pricewatch.scrapers.scraper import PriceScraper
from pricewatch.services.notifier import Notifier
from pricewatch.services.product_store import ProductStore

logger = structlog.get_logger(__name__)

CHECK_JOB_ID = "price_check"
WARMUP_JOB_ID = "price_check_warmup"
RESUME_JOB_ID = "price_monitor_resume"

MIN_INTERVAL_MINUTES = 1
MAX_INTERVAL_MINUTES = 1440

STATE_STOPPED = "stopped"
STATE_IDLE = "idle"
STATE_CHECKING = "checking"


def _chunks(items: List[Product], size: int) -> List[List[Product]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


@dataclass
class CheckResult:
    """Outcome of checking one product."""

    product: Product
    success: bool
    old_price: Optional[float] = None
    new_price: Optional[float] = None
    price_change: Optional[float] = None
    notification: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    duration_ms: int = 0

    @property
    def notified(self) -> bool:
        return bool(self.notification and self.notification.get("sent"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product.id,
            "name": self.product.name,
            "url": self.product.url,
            "success": self.success,
            "old_price": self.old_price,
            "new_price": self.new_price,
            "price_change": self.price_change,
            "notification": self.notification,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class CheckSummary:
    """Aggregate of one check cycle."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    notifications: int = 0
    average_price: float = 0.0
    biggest_drop: float = 0.0
    biggest_increase: float = 0.0
    duration_ms: int = 0
    results: List[CheckResult] = field(default_factory=list, repr=False)

    @classmethod
    def from_results(cls, results: List[CheckResult], duration_ms: int = 0) -> "CheckSummary":
        successful = [r for r in results if r.success]
        changes = [r.price_change for r in successful if r.price_change is not None]
        return cls(
            total=len(results),
            successful=len(successful),
            failed=len(results) - len(successful),
            notifications=sum(1 for r in successful if r.notified),
            average_price=(
                sum(r.new_price for r in successful) / len(successful) if successful else 0.0
            ),
            biggest_drop=min([0.0, *changes]),
            biggest_increase=max([0.0, *changes]),
            duration_ms=duration_ms,
            results=results,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop("results")
        return data


class PriceMonitor:
    """Schedules and runs price check cycles.

    States:
    - stopped: no recurring trigger registered
    - idle: trigger registered, no cycle running
    - checking: a cycle is in flight

    ``stop()`` only removes the trigger; an in-flight cycle finishes.
    """

    def __init__(
        self,
        store: ProductStore,
        scraper: PriceScraper,
        notifier: Notifier,
        check_interval_minutes: int = 60,
        promotion_threshold: float = 0.1,
        batch_size: int = 5,
        max_products_per_check: int = 50,
        batch_delay_seconds: float = 2.0,
        warmup_seconds: float = 60,
        force_check_delay_seconds: float = 1.0,
        history_retention_days: int = 90,
        maintenance_every: int = 10,
        backup_every: int = 50,
        summary_threshold: int = 5,
        backup_dir: str = "./backups",
        timezone: str = "UTC",
        sleep: SleepFunc = asyncio.sleep,
    ):
        """Initialize price monitor.

        Args:
            store: Product store
            scraper: Price scraper
            notifier: Notification delivery
            check_interval_minutes: Cycle interval and "due" age
            promotion_threshold: Default relative change for drop/increase rules
            batch_size: Products checked concurrently per sub-batch
            max_products_per_check: Cap on products per cycle
            batch_delay_seconds: Pause between sub-batches
            warmup_seconds: Delay before the first cycle after start
            force_check_delay_seconds: Pause between products in force_check
            history_retention_days: History older than this is purged by maintenance
            maintenance_every: Run maintenance every N completed cycles
            backup_every: Back up the store every N completed cycles
            summary_threshold: Notifications in one cycle that trigger a summary
            backup_dir: Directory for store backups
            timezone: Scheduler timezone
            sleep: Awaitable sleep used for the in-cycle delays
        """
        if not MIN_INTERVAL_MINUTES <= check_interval_minutes <= MAX_INTERVAL_MINUTES:
            raise InvalidIntervalError(check_interval_minutes)

        self.store = store
        self.scraper = scraper
        self.notifier = notifier
        self.check_interval_minutes = check_interval_minutes
        self.promotion_threshold = promotion_threshold
        self.batch_size = batch_size
        self.max_products_per_check = max_products_per_check
        self.batch_delay_seconds = batch_delay_seconds
        self.warmup_seconds = warmup_seconds
        self.force_check_delay_seconds = force_check_delay_seconds
        self.history_retention_days = history_retention_days
        self.maintenance_every = maintenance_every
        self.backup_every = backup_every
        self.summary_threshold = summary_threshold
        self.backup_dir = backup_dir
        self.timezone = timezone
        self._sleep = sleep

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._checking = False
        self._current_check: Optional[Dict[str, Any]] = None
        self._started = time.monotonic()
        self.stats = self._empty_stats()
        self.logger = logger.bind(service="price_monitor")

    @classmethod
    def from_settings(
        cls,
        store: ProductStore,
        scraper: PriceScraper,
        notifier: Notifier,
        app_settings: Settings,
        **overrides,
    ) -> "PriceMonitor":
        params = dict(
            check_interval_minutes=app_settings.CHECK_INTERVAL_MINUTES,
            promotion_threshold=app_settings.PROMOTION_THRESHOLD,
            batch_size=app_settings.MONITOR_BATCH_SIZE,
            max_products_per_check=app_settings.MONITOR_MAX_PRODUCTS_PER_CHECK,
            batch_delay_seconds=app_settings.REQUEST_DELAY_MS / 1000,
            warmup_seconds=app_settings.MONITOR_WARMUP_SECONDS,
            force_check_delay_seconds=app_settings.FORCE_CHECK_DELAY_MS / 1000,
            history_retention_days=app_settings.HISTORY_RETENTION_DAYS,
            maintenance_every=app_settings.MAINTENANCE_EVERY_CHECKS,
            backup_every=app_settings.BACKUP_EVERY_CHECKS,
            summary_threshold=app_settings.SUMMARY_NOTIFICATION_THRESHOLD,
            backup_dir=app_settings.BACKUP_DIR,
            timezone=app_settings.MONITOR_TIMEZONE,
        )
        params.update(overrides)
        return cls(store, scraper, notifier, **params)

    @staticmethod
    def _empty_stats(next_check: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "total_checks": 0,
            "failed_cycles": 0,
            "skipped_checks": 0,
            "successful_checks": 0,
            "failed_checks": 0,
            "notifications_sent": 0,
            "last_check": None,
            "next_check": next_check,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        if self._checking:
            return STATE_CHECKING
        return STATE_IDLE if self._running else STATE_STOPPED

    def is_running(self) -> bool:
        return self._running

    def _ensure_scheduler(self) -> AsyncIOScheduler:
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(timezone=self.timezone)
        if not self.scheduler.running:
            self.scheduler.start()
        return self.scheduler

    def start(self) -> None:
        """Register the recurring check and a warm-up check.

        No-op when already running.
        """
        if self._running:
            self.logger.warning("monitor_already_running")
            return

        scheduler = self._ensure_scheduler()
        self._remove_job(RESUME_JOB_ID)
        now = datetime.now(timezone.utc)

        job = scheduler.add_job(
            func=self._run_check_wrapper,
            trigger=IntervalTrigger(minutes=self.check_interval_minutes, timezone=self.timezone),
            id=CHECK_JOB_ID,
            name="Price check",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        scheduler.add_job(
            func=self._run_check_wrapper,
            trigger=DateTrigger(run_date=now + timedelta(seconds=self.warmup_seconds), timezone=self.timezone),
            id=WARMUP_JOB_ID,
            name="Warm-up price check",
            replace_existing=True,
        )

        self._running = True
        self.stats["next_check"] = job.next_run_time
        self.logger.info(
            "monitor_started",
            interval_minutes=self.check_interval_minutes,
            warmup_seconds=self.warmup_seconds,
            next_check=job.next_run_time.isoformat() if job.next_run_time else None,
        )

    def stop(self) -> None:
        """Remove the scheduled checks and any pending resume.

        An in-flight cycle is left to finish.
        """
        resume_cancelled = self._remove_job(RESUME_JOB_ID)
        if not self._running:
            if resume_cancelled:
                self.logger.info("monitor_resume_cancelled")
            else:
                self.logger.warning("monitor_not_running")
            return

        for job_id in (CHECK_JOB_ID, WARMUP_JOB_ID):
            self._remove_job(job_id)

        self._running = False
        self.stats["next_check"] = None
        self.logger.info("monitor_stopped")

    def _remove_job(self, job_id: str) -> bool:
        if self.scheduler and self.scheduler.get_job(job_id):
            self.scheduler.remove_job(job_id)
            return True
        return False

    def shutdown(self) -> None:
        """Stop and shut the scheduler down (application exit)."""
        if self._running:
            self.stop()
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

    def set_check_interval(self, minutes: int) -> None:
        """Change the interval (1..1440 minutes), restarting when running."""
        if not MIN_INTERVAL_MINUTES <= minutes <= MAX_INTERVAL_MINUTES:
            raise InvalidIntervalError(minutes)

        was_running = self._running
        if was_running:
            self.stop()
        self.check_interval_minutes = minutes
        if was_running:
            self.start()

        self.logger.info("check_interval_changed", interval_minutes=minutes)

    def pause(self, minutes: float = 60) -> datetime:
        """Stop now and resume automatically after ``minutes``.

        Returns:
            When the monitor resumes

        Raises:
            MonitorStateError: the monitor is not running
        """
        if not self._running:
            raise MonitorStateError("Monitor is not running")

        self.stop()
        resume_at = datetime.now(timezone.utc) + timedelta(minutes=minutes)
        self._ensure_scheduler().add_job(
            func=self._resume,
            trigger=DateTrigger(run_date=resume_at, timezone=self.timezone),
            id=RESUME_JOB_ID,
            name="Resume price monitor",
            replace_existing=True,
        )
        self.logger.info("monitor_paused", minutes=minutes, resume_at=resume_at.isoformat())
        return resume_at

    async def _resume(self) -> None:
        self.logger.info("monitor_resuming")
        self.start()

    def reset_stats(self) -> None:
        self.stats = self._empty_stats(next_check=self.stats["next_check"])
        self.logger.info("monitor_stats_reset")

    # ------------------------------------------------------------------
    # Check cycle
    # ------------------------------------------------------------------

    async def _run_check_wrapper(self) -> None:
        """Entry point for APScheduler; exceptions never reach the scheduler."""
        try:
            await self.execute_check()
        except Exception as e:
            self.logger.error("scheduled_check_failed", error=str(e), exc_info=True)
        finally:
            if self.scheduler and self._running:
                job = self.scheduler.get_job(CHECK_JOB_ID)
                self.stats["next_check"] = job.next_run_time if job else None

    async def execute_check(self) -> Optional[CheckSummary]:
        """Run one check cycle over the products that are due.

        Returns:
            CheckSummary, or None when the cycle was skipped, had nothing
            to do, or failed
        """
        if self._checking:
            self.stats["skipped_checks"] += 1
            self.logger.warning("check_already_running_skipped")
            return None

        self._checking = True
        started = time.monotonic()
        self._current_check = {"start_time": datetime.now(timezone.utc), "products_count": 0, "completed": 0}
        summary: Optional[CheckSummary] = None
        self.logger.info("check_started")

        try:
            products = await self.store.find_due_for_check(
                self.check_interval_minutes,
                self.max_products_per_check,
            )
            if not products:
                self.logger.info("no_products_due")
            else:
                self._current_check["products_count"] = len(products)
                self.logger.info("checking_products", count=len(products))
                results = await self._check_in_batches(products)
                summary = CheckSummary.from_results(results, int((time.monotonic() - started) * 1000))
                await self.process_check_results(summary)
        except Exception as e:
            self.stats["failed_cycles"] += 1
            self.logger.error("check_cycle_failed", error=str(e), exc_info=True)
            await self._report_error("Price check cycle failed", {"error": str(e)})
        finally:
            self.stats["total_checks"] += 1
            self.stats["last_check"] = datetime.now(timezone.utc)
            self._current_check = None
            self._checking = False
            self.logger.info(
                "check_completed",
                duration_ms=int((time.monotonic() - started) * 1000),
                products_checked=summary.total if summary else 0,
                successful=summary.successful if summary else 0,
            )

        if self.maintenance_every and self.stats["total_checks"] % self.maintenance_every == 0:
            await self.perform_maintenance()

        return summary

    async def _check_in_batches(self, products: List[Product]) -> List[CheckResult]:
        results: List[CheckResult] = []
        batches = _chunks(products, self.batch_size)

        for index, batch in enumerate(batches):
            self.logger.debug("processing_batch", batch=index + 1, batches=len(batches), size=len(batch))
            batch_results = await asyncio.gather(*(self._check_safely(product) for product in batch))
            results.extend(batch_results)

            if index < len(batches) - 1:
                await self._sleep(self.batch_delay_seconds)

        return results

    async def _check_safely(self, product: Product) -> CheckResult:
        try:
            result = await self.check_product(product)
        except Exception as e:
            self.logger.error("product_check_crashed", product_id=product.id, error=str(e), exc_info=True)
            self.stats["failed_checks"] += 1
            result = CheckResult(product=product, success=False, error=str(e))
        if self._current_check is not None:
            self._current_check["completed"] += 1
        return result

    async def check_product(self, product: Product) -> CheckResult:
        """Scrape one product and record the outcome.

        A failure increments the product's error count (deactivating it at
        the ceiling). A success updates the price and appends history in one
        transaction, then evaluates the notification rules.
        """
        started = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            scraped = await self.scraper.scrape_price(product.url)

            if not scraped.success:
                await self.store.increment_error(product.id, scraped.error)
                self.stats["failed_checks"] += 1
                return CheckResult(product=product, success=False, error=scraped.error, duration_ms=_elapsed())

            update = await self.store.record_price_check(product.id, scraped.price)
            notification = await self.check_notifications(
                product, scraped.price, update.old_price, update.price_change
            )

        except Exception as e:
            self.logger.error("product_check_failed", product_id=product.id, error=str(e), exc_info=True)
            await self.store.increment_error(product.id, str(e))
            self.stats["failed_checks"] += 1
            return CheckResult(product=product, success=False, error=str(e), duration_ms=_elapsed())

        self.stats["successful_checks"] += 1
        return CheckResult(
            product=product,
            success=True,
            old_price=update.old_price,
            new_price=scraped.price,
            price_change=update.price_change,
            notification=notification,
            duration_ms=_elapsed(),
        )

    async def check_notifications(
        self,
        product: Product,
        new_price: float,
        old_price: Optional[float],
        price_change: float,
    ) -> Optional[Dict[str, Any]]:
        """Fire at most one notification for a successful check.

        Notification failures are logged and never fail the check.

        Returns:
            The notifier's outcome, or None when no rule matched
        """
        threshold = (
            product.promotion_threshold
            if product.promotion_threshold is not None
            else self.promotion_threshold
        )
        target = product.target_price

        try:
            if target is not None and new_price <= target and old_price and old_price > target:
                outcome = await self.notifier.notify_target_reached(product, new_price, old_price)
            elif old_price and price_change <= -(threshold * 100):
                outcome = await self.notifier.notify_price_drop(product, new_price, old_price, price_change)
            elif old_price and price_change >= threshold * 200:
                outcome = await self.notifier.notify_price_increase(product, new_price, old_price, price_change)
            else:
                return None
        except Exception as e:
            self.logger.error("notification_failed", product_id=product.id, error=str(e), exc_info=True)
            return {"sent": False, "reason": "error", "error": str(e)}

        if outcome and outcome.get("sent"):
            self.stats["notifications_sent"] += 1
        return outcome

    async def process_check_results(self, summary: CheckSummary) -> None:
        """Log the cycle summary and request a summary notification when busy."""
        self.logger.info("check_results_processed", **summary.to_dict())

        if summary.notifications >= self.summary_threshold:
            successful = [r for r in summary.results if r.success]
            try:
                await self.notifier.notify_summary(summary.to_dict(), successful)
            except Exception as e:
                self.logger.error("summary_notification_failed", error=str(e), exc_info=True)

    async def _report_error(self, message: str, context: Dict[str, Any]) -> None:
        try:
            await self.notifier.notify_error(message, context)
        except Exception as e:
            self.logger.error("error_notification_failed", error=str(e))

    async def perform_maintenance(self) -> Dict[str, Any]:
        """Reactivate errored products, purge old history, expire cooldowns and back up periodically."""
        report: Dict[str, Any] = {"reactivated": 0, "history_purged": 0, "cooldowns_cleared": 0, "backup": None}
        self.logger.info("maintenance_started", total_checks=self.stats["total_checks"])

        try:
            report["reactivated"] = await self.store.reactivate_stale_errored()
            report["history_purged"] = await self.store.purge_history_older_than(self.history_retention_days)
            report["cooldowns_cleared"] = self.notifier.cleanup_cooldowns()

            if self.backup_every and self.stats["total_checks"] % self.backup_every == 0:
                location = await self.store.backup(self.backup_dir)
                report["backup"] = str(location) if location else None
        except Exception as e:
            self.logger.error("maintenance_failed", error=str(e), exc_info=True)
            report["error"] = str(e)
            await self._report_error("Maintenance failed", {"error": str(e)})

        self.logger.info("maintenance_completed", **report)
        return report

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def force_check(self, product_id: Optional[int] = None) -> Dict[str, Any]:
        """Check one product, or every active one, right now.

        Bypasses the "due" filter. Products are checked sequentially with a
        fixed pause between them.

        Raises:
            NotFoundError: ``product_id`` is unknown
        """
        if product_id is not None:
            products = [await self.store.get_product(product_id)]
        else:
            products = await self.store.find_active()

        self.logger.info("force_check_started", count=len(products), product_id=product_id)

        results: List[CheckResult] = []
        for index, product in enumerate(products):
            results.append(await self._check_safely(product))
            if index < len(products) - 1:
                await self._sleep(self.force_check_delay_seconds)

        successful = sum(1 for r in results if r.success)
        self.logger.info("force_check_completed", total=len(results), successful=successful)

        return {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
            "results": [r.to_dict() for r in results],
        }

    def get_stats(self) -> Dict[str, Any]:
        current = None
        if self._current_check is not None:
            current = {
                "start_time": self._current_check["start_time"],
                "products_count": self._current_check["products_count"],
                "progress": self._current_check["completed"],
            }
        return {
            **self.stats,
            "state": self.state,
            "is_running": self._running,
            "check_interval_minutes": self.check_interval_minutes,
            "current_check": current,
            "uptime_seconds": int(time.monotonic() - self._started),
        }
