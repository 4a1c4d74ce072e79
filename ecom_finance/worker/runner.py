"""
Worker entry point.
Run with: python -m ecom_finance.worker.runner
"""

import structlog
from redis import Redis
from rq import Worker

from ecom_finance.config import settings
from ecom_finance.observability.logging import setup_logging

logger = structlog.get_logger(__name__)


def log_failed_job(job, exc_type, exc_value, traceback) -> bool:
    """Record which company and batch kind a failed job belonged to.

    Returns True so RQ's default handler still moves the job to the failed
    registry.
    """
    logger.error(
        "job_failed_in_worker",
        rq_job_id=job.id,
        kind=job.meta.get("kind"),
        empresa_id=job.meta.get("empresa_id"),
        error=f"{exc_type.__name__}: {exc_value}",
    )
    return True


def main():
    """Start the RQ worker for imports, CMV recomputes, mapping reprocesses and syncs."""
    setup_logging()

    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.rq import RqIntegration
        sentry_sdk.init(dsn=settings.SENTRY_DSN, integrations=[RqIntegration()])

    conn = Redis.from_url(settings.REDIS_URL)
    worker = Worker(
        queues=[settings.QUEUE_NAME],
        connection=conn,
        name=f"{settings.APP_NAME}-worker-{settings.APP_VERSION}",
        exception_handlers=[log_failed_job],
    )

    logger.info("worker_starting", queue=settings.QUEUE_NAME, job_timeout=settings.JOB_TIMEOUT_SECONDS)
    worker.work(with_scheduler=False)


if __name__ == "__main__":
    main()
