import logging

from celery import Celery

from catalog_index.config import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    REBUILD_MAX_RETRIES,
    REBUILD_RETRY_COUNTDOWN_SECONDS,
)
from catalog_index.errors import IndexMutationError, IndexRebuildError, RebuildInProgressError
from catalog_index.indexer import rebuild_index

# Register worker metrics (the HTTP endpoint only starts when the worker is ready
# and CATALOG_INDEX_METRICS_PORT is set).
from catalog_index import metrics as _worker_metrics  # noqa: F401

logger = logging.getLogger("catalog-worker")

app = Celery('catalog_index')
app.conf.broker_url = CELERY_BROKER_URL
app.conf.result_backend = CELERY_RESULT_BACKEND


@app.task(bind=True, name="catalog_index.rebuild_index", max_retries=REBUILD_MAX_RETRIES)
def rebuild_index_task(self):
    """
    Background task: rebuild the catalog search index and promote it.

    Engine and delete failures are retried; the previous generation keeps
    serving queries in the meantime. Anything else is a defect and fails the
    task straight away.
    """
    try:
        result = rebuild_index()
    except RebuildInProgressError as e:
        logger.info("Skipping rebuild: %s", e)
        return {"status": "skipped", "reason": str(e)}
    except (IndexRebuildError, IndexMutationError) as e:
        logger.warning("Index rebuild failed (attempt %s): %s", self.request.retries + 1, e)
        raise self.retry(exc=e, countdown=REBUILD_RETRY_COUNTDOWN_SECONDS)

    return {"status": "ok", **result.as_dict()}
