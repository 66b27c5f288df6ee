from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
QUEUE_DEPTH = Gauge('boxoffice_job_queue_depth', 'Number of jobs per status and type', ['status', 'job_type'])
JOB_ENQUEUED = Counter('boxoffice_jobs_enqueued_total', 'Total jobs enqueued', ['job_type'])
JOB_FAILURES = Counter('boxoffice_job_failures_total', 'Total job failures', ['job_type', 'type'])  # type=retryable|final
JOB_DEAD = Counter('boxoffice_jobs_dead_total', 'Total jobs moved to dead letter', ['job_type'])
JOB_COMPLETE_TOTAL = Counter('boxoffice_jobs_succeeded_total', 'Total jobs completed successfully', ['job_type'])

JOB_START_DELAY = Histogram(
    'boxoffice_job_start_delay_seconds', 'Time from next_run_at to claim',
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0]
)
JOB_DURATION = Histogram(
    'boxoffice_job_duration_seconds', 'Time from claim to completion',
    buckets=[0.1, 0.5, 1.0, 5.0, 10.0, 60.0]
)

JOBS_INFLIGHT = Gauge(
    "boxoffice_jobs_inflight",
    "Number of jobs currently processing"
)

RECLAIMED_JOBS = Counter(
    "boxoffice_reclaimed_jobs_total",
    "Total number of stuck jobs recovered by the reclaim sweep"
)

SEAT_RELEASES = Counter(
    "boxoffice_seat_releases_total",
    "Seats returned to performances",
    ["reason"]
)

WEBHOOKS_RECEIVED = Counter(
    "boxoffice_webhooks_received_total",
    "Payment webhooks received",
    ["outcome"]  # enqueued|missing_id|enqueue_failed
)

LEADER_STATUS = Gauge(
    "boxoffice_instance_leader_status",
    "Whether this instance is currently the leader (1 for leader, 0 for follower)"
)

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
