"""
Reward worker entry point

Startup:
1. Configure logging
2. Wait for PostgreSQL
3. Apply migrations (AUTO_MIGRATE)
4. Ensure consumer groups on the journey streams
5. Start the outbox relay scheduler
6. Consume until SIGINT / SIGTERM
"""
import logging
import signal
import sys
import threading

from reward.config import get_settings

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def run_migrations(config_path: str = "alembic.ini") -> None:
    """alembic upgrade head, reusing the worker's logging setup."""
    from alembic import command
    from alembic.config import Config

    cfg = Config(config_path)
    cfg.attributes["configure_logger"] = False
    command.upgrade(cfg, "head")
    logger.info("Database migrations applied")


def build_worker(settings):
    from reward.application.worker import RewardWorker
    from reward.infrastructure.broker.redis_streams import (
        get_redis_client, RedisStreamConsumer, RedisStreamPublisher, DeadLetterPublisher,
    )
    from reward.infrastructure.db.session import get_session_factory

    client = get_redis_client()
    consumer = RedisStreamConsumer(
        client,
        group=settings.CONSUMER_GROUP,
        consumer_name=settings.get_consumer_name(),
        streams=list(settings.inbound_streams()),
        count=settings.READ_BATCH_SIZE,
        block_ms=settings.READ_BLOCK_MS,
        idle_ms=settings.REDELIVERY_IDLE_MS,
    )
    consumer.ensure_groups()

    return RewardWorker(
        session_factory=get_session_factory(),
        consumer=consumer,
        goal_publisher=RedisStreamPublisher(client, settings.STREAM_GOAL_ACHIEVED),
        dead_letters=DeadLetterPublisher(client, settings.STREAM_DEAD_LETTER),
        settings=settings,
    )


def main() -> int:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    from reward.infrastructure.db.session import wait_for_db
    from reward.application.scheduler import start_scheduler, shutdown_scheduler

    if not wait_for_db(settings.DB_READY_RETRIES, settings.DB_READY_INTERVAL_SECONDS):
        logger.error("Database not ready after %d attempts, worker will not start", settings.DB_READY_RETRIES)
        return 1

    if settings.AUTO_MIGRATE:
        run_migrations()

    worker = build_worker(settings)

    stop = threading.Event()

    def _stop(signum, frame):
        logger.info("Received signal %d, shutting down", signum)
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    start_scheduler()
    logger.info(
        "Reward worker started (goal %s km, %s points/km, %s rounding)",
        settings.DAILY_GOAL_KM, settings.POINTS_PER_KM, settings.POINTS_ROUNDING_MODE,
    )
    try:
        worker.run_forever(stop)
    finally:
        shutdown_scheduler()
    return 0


if __name__ == "__main__":
    sys.exit(main())
