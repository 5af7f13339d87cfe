"""
Background scheduler - periodic jobs inside the worker process.

Jobs:
  - Outbox relay (every OUTBOX_INTERVAL_SECONDS): publishes committed
    DailyGoalAchieved events that the consumer loop has not relayed yet
    (publish failures, idle streams)
"""
import logging

from apscheduler.schedulers.background import BackgroundScheduler

from reward.config import get_settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(daemon=True)


def _run_outbox_relay():
    from reward.infrastructure.db.session import get_session_factory
    from reward.infrastructure.broker.redis_streams import get_redis_client, RedisStreamPublisher
    from reward.application.outbox import OutboxRelay

    settings = get_settings()
    Session = get_session_factory()
    db = Session()
    try:
        publisher = RedisStreamPublisher(get_redis_client(), settings.STREAM_GOAL_ACHIEVED)
        count = OutboxRelay(db, publisher, settings.OUTBOX_BATCH_SIZE).run()
        if count:
            logger.info("Outbox relay: published %d event(s)", count)
    except Exception:
        db.rollback()
        logger.exception("Outbox relay job failed")
    finally:
        db.close()


def start_scheduler():
    """Start the background scheduler with all periodic jobs."""
    settings = get_settings()

    scheduler.add_job(
        _run_outbox_relay,
        "interval",
        seconds=settings.OUTBOX_INTERVAL_SECONDS,
        id="outbox_relay",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info(
        "Scheduler started with %d job(s): %s",
        len(scheduler.get_jobs()),
        ", ".join(j.id for j in scheduler.get_jobs()),
    )


def shutdown_scheduler():
    """Gracefully stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
