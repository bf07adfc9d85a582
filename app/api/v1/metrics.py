from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
QUEUE_DEPTH = Gauge('render_queue_depth', 'Number of jobs in pending state', ['tier'])
JOB_FAILURES = Counter('render_job_failures_total', 'Total render job failures', ['tier', 'type'])  # type=retryable|final
JOB_QUEUE_WAIT = Histogram(
    'render_job_queue_wait_seconds',
    'Time from admission to claim',
    buckets=[1.0, 10.0, 30.0, 60.0, 300.0, 900.0, 3600.0],
)

JOB_DURATION = Histogram('render_job_duration_seconds', 'Time from claim to terminal state', buckets=[1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0])

JOBS_PROCESSING = Gauge(
    "render_jobs_processing",
    "Number of jobs currently processing (0 or 1)"
)

JOB_DISPATCH_COUNT = Counter(
    "render_job_dispatch_total",
    "Dispatch cycles by outcome",
    ["status"]  # claimed vs empty
)

JOB_COMPLETE_TOTAL = Counter(
    "render_job_complete_total",
    "Jobs completed",
    ["tier", "fallback"]
)

ADMISSION_REJECTIONS = Counter(
    "render_admission_rejections_total",
    "Admission requests rejected, by reason code",
    ["code"]
)

JOBS_ADMITTED = Counter(
    "render_jobs_admitted_total",
    "Jobs admitted",
    ["tier"]
)

FRAME_FAULTS = Counter(
    "render_frame_faults_total",
    "Frames replaced by a placeholder after a render fault"
)

WEBHOOK_DELIVERIES = Counter(
    "render_webhook_deliveries_total",
    "Callback delivery attempts",
    ["result"]  # delivered|rejected|error
)

LEADER_STATUS = Gauge(
    "instance_leader_status",
    "Whether this instance is currently the leader (1 for leader, 0 for follower)"
)


@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
