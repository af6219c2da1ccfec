"""
Wires the rebuild job together from configuration.

    from catalog_index.indexer import rebuild_index
    rebuild_index()           # -> RebuildResult

Only one rebuild runs per process at a time; a second caller gets
RebuildInProgressError instead of racing the first one's swap.
"""

import threading

import meilisearch

from catalog_index.catalog import CatalogPaginator, SqlCatalogStore, SqlFieldRegistry, SqlLocaleDirectory
from catalog_index.config import (
    CATALOG_INDEX_UID,
    CATALOG_REINDEX_UID,
    INDEX_NAMESPACE,
    INDEX_PAGE_SIZE,
    MAPPED_LIST_PROPERTIES,
    MEILI_HOST,
    MEILI_MASTER_KEY,
    MEILI_TIMEOUT_SECONDS,
    SINGLE_INDEX_MODE,
)
from catalog_index.db_session import TransactionManager
from catalog_index.documents import DocumentBuilder
from catalog_index.errors import RebuildInProgressError
from catalog_index.extensions import ExtensionManager
from catalog_index.field_values import FieldValueResolver, TranslationHandler
from catalog_index.generations import IndexGenerationManager
from catalog_index.rebuild import IndexRebuilder

_REBUILD_LOCK = threading.Lock()


def get_search_client():
    return meilisearch.Client(MEILI_HOST, MEILI_MASTER_KEY, timeout=MEILI_TIMEOUT_SECONDS)


def default_extensions(load_plugins=True):
    """Built-in handlers first in priority order, plus any installed plugins."""
    extensions = ExtensionManager([TranslationHandler(MAPPED_LIST_PROPERTIES)])
    if load_plugins:
        extensions.load_entry_points()
    return extensions


def build_rebuilder(
    client=None,
    session_factory=None,
    page_size=INDEX_PAGE_SIZE,
    single_index=SINGLE_INDEX_MODE,
    extensions=None,
    namespace=INDEX_NAMESPACE,
):
    extensions = extensions if extensions is not None else default_extensions()
    resolver = FieldValueResolver(extensions, MAPPED_LIST_PROPERTIES)
    generations = IndexGenerationManager(
        client if client is not None else get_search_client(),
        CATALOG_INDEX_UID,
        CATALOG_REINDEX_UID,
        single_index=single_index,
    )
    return IndexRebuilder(
        transactions=TransactionManager(session_factory),
        paginator=CatalogPaginator(SqlCatalogStore(), page_size),
        field_registry=SqlFieldRegistry(),
        locale_directory=SqlLocaleDirectory(),
        builder=DocumentBuilder(resolver, extensions, namespace=namespace),
        generations=generations,
        namespace=namespace,
    )


def rebuild_index(cancel_token=None, rebuilder=None, **kwargs):
    """
    Rebuild the whole catalog index and promote it.

    Raises RebuildInProgressError when another rebuild holds the process lock.
    """
    if not _REBUILD_LOCK.acquire(blocking=False):
        raise RebuildInProgressError("An index rebuild is already running in this process")
    try:
        rebuilder = rebuilder or build_rebuilder(**kwargs)
        return rebuilder.rebuild(cancel_token=cancel_token)
    finally:
        _REBUILD_LOCK.release()
