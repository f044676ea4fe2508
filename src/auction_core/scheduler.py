"""
Background sweep of open auctions.

Runs ``sweep_extensions_and_closes`` on a fixed interval so stalled
auctions are extended and expired ones are closed without user traffic.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from .auction_lifecycle import SweepReport, sweep_extensions_and_closes
from .config import Settings, get_settings

logger = logging.getLogger("auction-core.scheduler")

SWEEP_JOB_ID = "auction_sweep"


class AuctionSweeper:
    """
    Owns the scheduler that drives auction extension and close.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.scheduler: Optional[BackgroundScheduler] = None

    def run_once(self, now: Optional[datetime] = None) -> SweepReport:
        """Sweep all open auctions with a fresh session."""
        db = self.session_factory()
        try:
            return sweep_extensions_and_closes(db, now, self.settings)
        finally:
            db.close()

    def _sweep_job(self) -> None:
        try:
            self.run_once()
        except Exception as e:
            logger.error(f"Auction sweep failed: {e}", exc_info=True)

    def start(self) -> None:
        """Start the scheduler with the sweep job."""
        if self.scheduler and self.scheduler.running:
            return

        self.scheduler = BackgroundScheduler(timezone="UTC")
        self.scheduler.add_job(
            self._sweep_job,
            IntervalTrigger(seconds=self.settings.sweep_interval_seconds),
            id=SWEEP_JOB_ID,
            name="Auction Extension and Close Sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Auction sweep started (every {self.settings.sweep_interval_seconds}s)")

    def shutdown(self) -> None:
        """Stop the scheduler, waiting for a running sweep to finish."""
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Auction sweep stopped")
        self.scheduler = None

    @property
    def running(self) -> bool:
        return bool(self.scheduler and self.scheduler.running)
