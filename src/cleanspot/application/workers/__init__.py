"""Worker system - background job processing, sync scheduling and webhook retries."""

from cleanspot.application.workers.job_worker import JobWorkerPool, create_job_worker_pool
from cleanspot.application.workers.sync_scheduler_worker import (
    SyncSchedulerWorker,
    create_sync_scheduler_worker,
)
from cleanspot.application.workers.webhook_retry_worker import (
    WebhookRetryWorker,
    create_webhook_retry_worker,
)

__all__ = [
    "JobWorkerPool",
    "SyncSchedulerWorker",
    "WebhookRetryWorker",
    "create_job_worker_pool",
    "create_sync_scheduler_worker",
    "create_webhook_retry_worker",
]
