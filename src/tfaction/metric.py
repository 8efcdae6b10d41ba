import logging

from prometheus_client import CollectorRegistry, Counter, Histogram, push_to_gateway

logger = logging.getLogger("tfaction")

push_registry = CollectorRegistry()

event_counter = Counter(
    "tfaction_num_event",
    "Total number of dispatched events",
    labelnames=["event", "action"],
    registry=push_registry,
)

execution_counter = Counter(
    "tfaction_num_execution",
    "Number of terraform executions per project",
    labelnames=["command", "result"],
    registry=push_registry,
)

execution_seconds = Histogram(
    "tfaction_execution_seconds",
    "Wall time of terraform init plus the primary operation",
    labelnames=["command"],
    buckets=(5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600),
    registry=push_registry,
)

requirement_skip_counter = Counter(
    "tfaction_num_requirement_skip",
    "Number of projects skipped because of unmet requirements",
    labelnames=["command", "reason"],
    registry=push_registry,
)

artifact_counter = Counter(
    "tfaction_num_artifact",
    "Plan artifact operations",
    labelnames=["operation", "result"],
    registry=push_registry,
)

comment_post_counter = Counter(
    "tfaction_num_comment_post",
    "Number of result comments posted",
    labelnames=["dry_run"],
    registry=push_registry,
)

error_counter = Counter(
    "tfaction_error_counter",
    "Total number of errors",
    labelnames=["context"],
    registry=push_registry,
)


def push_metrics(gateway: str, job: str = "tfaction") -> None:
    logger.debug("Pushing metrics to %s", gateway)
    try:
        push_to_gateway(gateway, job=job, registry=push_registry)
    except OSError:
        error_counter.labels(context="push_metrics").inc()
        logger.warning("Unable to push metrics to %s", gateway, exc_info=True)
