"""
Catalog Index Configuration Constants

Every tunable the rebuild job reads lives here, read once from the
environment at import time. Other modules import the names directly:

    from catalog_index.config import INDEX_PAGE_SIZE

Tests override a value by patching the module attribute where it is used,
not by editing this file.
"""

import os


def _env_flag(name, default="false"):
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


# =============================================================================
# SEARCH ENGINE CONNECTION
# =============================================================================

MEILI_HOST = os.getenv("MEILI_HOST", "http://meilisearch:7700")
MEILI_MASTER_KEY = os.getenv("MEILI_MASTER_KEY", "masterKey")

# HTTP timeout for a single request to Meilisearch (not the task wait below).
MEILI_TIMEOUT_SECONDS = int(os.getenv("MEILI_TIMEOUT_SECONDS", "30"))


# =============================================================================
# INDEX GENERATIONS
# =============================================================================
# Queries always hit CATALOG_INDEX_UID. The rebuild writes into
# CATALOG_REINDEX_UID and then swaps the two on the server.

CATALOG_INDEX_UID = os.getenv("CATALOG_INDEX_UID", "catalog")
CATALOG_REINDEX_UID = os.getenv("CATALOG_REINDEX_UID", "catalog_reindex")

# Constrained deployments can only afford one index. The rebuild then clears
# it first and writes in place, so readers see a partial index for a while.
SINGLE_INDEX_MODE = _env_flag("SINGLE_INDEX_MODE")

# Meilisearch applies writes asynchronously as "tasks". Waiting for a task to
# settle is our commit. 10 minutes covers a large batch on a busy instance.
TASK_WAIT_TIMEOUT_MS = int(os.getenv("TASK_WAIT_TIMEOUT_MS", "600000"))
TASK_POLL_INTERVAL_MS = int(os.getenv("TASK_POLL_INTERVAL_MS", "100"))


# =============================================================================
# DOCUMENT BUILDING
# =============================================================================

# Number of catalog items read, transformed and written per transaction.
# Larger pages = fewer engine commits, but more memory per page.
INDEX_PAGE_SIZE = int(os.getenv("INDEX_PAGE_SIZE", "100"))

# Tenant namespace stored on every document and used in document ids.
INDEX_NAMESPACE = os.getenv("INDEX_NAMESPACE", "d")

# List properties that field paths may address by element name, e.g.
# "product_attributes.heat_range" reads the value of the attribute named heat_range.
MAPPED_LIST_PROPERTIES = tuple(
    name.strip()
    for name in os.getenv("MAPPED_LIST_PROPERTIES", "product_attributes").split(",")
    if name.strip()
)

# Third-party extension handlers register themselves under this entry-point group.
EXTENSION_ENTRY_POINT_GROUP = os.getenv("EXTENSION_ENTRY_POINT_GROUP", "catalog_index.extensions")


# =============================================================================
# BACKGROUND EXECUTION
# =============================================================================

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://redis:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://redis:6379/0")

# Engine failures are usually transient (restart, network blip), so the task
# retries a few times. Unexpected errors are never retried.
REBUILD_MAX_RETRIES = int(os.getenv("REBUILD_MAX_RETRIES", "3"))
REBUILD_RETRY_COUNTDOWN_SECONDS = int(os.getenv("REBUILD_RETRY_COUNTDOWN_SECONDS", "60"))

# Port for the worker's Prometheus endpoint. Unset = no endpoint.
CATALOG_INDEX_METRICS_PORT = os.getenv("CATALOG_INDEX_METRICS_PORT")
