"""
Celery configuration for timeout jobs.

Loaded with ``celery_app.config_from_object("gateway.timeouts.celeryconfig")``.
"""
from gateway.shared.config import CELERY_BROKER_URL, CELERY_RESULT_BACKEND, TIMEOUT_QUEUE

broker_url = CELERY_BROKER_URL
result_backend = CELERY_RESULT_BACKEND

task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"

timezone = "UTC"
enable_utc = True

# Failed jobs stay inspectable in the result backend for 7 days.
result_expires = 60 * 60 * 24 * 7

# A job is acknowledged only once it finishes; a worker that dies mid-job
# hands it back to the broker.
task_acks_late = True
task_reject_on_worker_lost = True
worker_prefetch_multiplier = 1

task_routes = {
    "gateway.timeouts.cancel_expired_transaction": {"queue": TIMEOUT_QUEUE},
}

worker_send_task_events = True
task_send_sent_event = True
