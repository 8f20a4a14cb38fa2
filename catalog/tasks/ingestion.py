"""Ingestion task definitions for ARQ."""

from arq import Retry
from loguru import logger

from catalog.config import get_settings
from catalog.errors import CatalogError, classify_error
from catalog.services.ingestion import IngestionCoordinator


async def process_event_task(
    ctx: dict,
    event_data: dict,
    source_id: int,
    source_priority: int | None = None,
) -> dict:
    """
    Upsert one scraped event into the catalog.

    Args:
        ctx: ARQ context (``coordinator`` is set up by the worker startup hook)
        event_data: Scraper payload (external_id, title, start_at, venue_data, ...)
        source_id: ID of the Source that produced the payload
        source_priority: Overrides the source's configured priority

    Returns:
        dict with the canonical event id and outcome, or the error kind.
        Lock timeouts and constraint races are re-queued with a delay until
        the job runs out of tries.
    """
    settings = get_settings()
    coordinator: IngestionCoordinator = ctx["coordinator"]
    external_id = event_data.get("external_id") if isinstance(event_data, dict) else None
    job_try = ctx.get("job_try", 1)

    logger.info(f"[INGEST_EVENT] source_id {source_id} external_id {external_id!r} (try {job_try})")

    try:
        event = await coordinator.process_event(event_data, source_id, source_priority)
    except CatalogError as exc:
        if exc.retryable and job_try < settings.worker_max_tries:
            logger.warning(
                f"[INGEST_EVENT] {exc.kind.value} for {external_id!r}, "
                f"retrying in {settings.lock_retry_defer_seconds}s"
            )
            raise Retry(defer=settings.lock_retry_defer_seconds) from exc
        return {
            "status": "failed",
            "task": "process_event",
            "source_id": source_id,
            "external_id": external_id,
            "error_kind": exc.kind.value,
            "retryable": exc.retryable,
            "error": exc.message,
        }
    except Exception as exc:
        kind = classify_error(exc)
        logger.exception(f"[INGEST_EVENT] Unexpected failure for {external_id!r}: {kind.value}")
        raise

    logger.info(f"[INGEST_EVENT] {event.outcome.value} event {event.id} for {external_id!r}")
    return {
        "status": "completed",
        "task": "process_event",
        "source_id": source_id,
        "external_id": external_id,
        "event_id": event.id,
        "outcome": event.outcome.value,
    }


async def process_events_task(ctx: dict, events: list[dict], source_id: int) -> dict:
    """Batch task: upsert a scraper run's payloads in order, one at a time."""
    logger.info(f"[INGEST_BATCH] Starting {len(events)} events for source_id {source_id}")

    outcomes: dict[str, int] = {}
    failed = []
    # A Retry re-queues the whole batch; already-ingested payloads come back unchanged
    for event_data in events:
        result = await process_event_task(ctx, event_data, source_id)
        if result["status"] == "completed":
            outcomes[result["outcome"]] = outcomes.get(result["outcome"], 0) + 1
        else:
            failed.append({"external_id": result["external_id"], "error_kind": result["error_kind"]})

    logger.info(f"[INGEST_BATCH] Complete: {outcomes}, {len(failed)} failed")
    return {
        "status": "completed",
        "task": "process_events",
        "source_id": source_id,
        **outcomes,
        "failed": failed,
    }


TASK_FUNCTIONS = [
    process_event_task,
    process_events_task,
]
