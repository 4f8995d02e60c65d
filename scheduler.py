import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from errors import ServiceError
from recurrence import local_today
from services import BillService, BudgetService, UserService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_maintenance(session, today=None) -> dict[str, int]:
    """Replenish bills and roll budgets over for every enabled user."""
    today = today or local_today()
    totals = {"users": 0, "bills_replenished": 0, "budgets_created": 0}
    for user in UserService(session).list_enabled():
        try:
            totals["bills_replenished"] += BillService(session, user.id).replenish_due(
                today
            )
            totals["budgets_created"] += len(
                BudgetService(session, user.id).roll_over_ended(today)
            )
        except ServiceError as exc:
            session.rollback()
            logger.warning(
                f"scheduler_user_failed: user_id={user.id} kind={exc.kind.value} error={exc}"
            )
            continue
        except Exception:
            session.rollback()
            logger.exception(f"scheduler_user_failed: user_id={user.id}")
            continue
        totals["users"] += 1
    return totals


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            totals = run_maintenance(session)
            logger.info(
                f"scheduler_run: source={source} users={totals['users']} "
                f"bills_replenished={totals['bills_replenished']} "
                f"budgets_created={totals['budgets_created']}"
            )

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_03:15"],
            id="maintenance_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["hourly_safety_net"],
            id="maintenance_hourly_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("scheduler_started: jobs=maintenance_daily,maintenance_hourly_safety")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("scheduler_stopped")
