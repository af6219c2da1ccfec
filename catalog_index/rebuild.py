"""
Full index rebuild.

    IDLE -> PREPARING -> PAGING -> FINALIZING -> SWAPPING -> CLEANING -> DONE

    Any state from PREPARING through CLEANING moves to FAILED on error.

PREPARING  snapshot the ambient context, make sure both generations exist,
           and clear the generation about to be written: the only index in
           single-index mode, the standby otherwise (it may hold pages from
           a failed run).
PAGING     count active products as of one instant, then for each page: open a
           read-only transaction, read the page, build documents, write the
           batch into the standby generation, commit the transaction.
FINALIZING optimize the standby generation.
SWAPPING   promote the standby generation (no-op in single-index mode).
CLEANING   clear the generation that was just demoted (dual mode only).

The ambient context is restored on every exit path. A failed or cancelled
rebuild never reaches SWAPPING, so readers keep the previous generation.
"""

from __future__ import annotations

import datetime
import enum
import logging
import time
from dataclasses import asdict, dataclass, field

from catalog_index import ambient
from catalog_index.ambient import IndexingContext
from catalog_index.cancellation import CancellationToken
from catalog_index.catalog import CatalogPaginator, FieldRegistry, LocaleDirectory
from catalog_index.config import INDEX_NAMESPACE
from catalog_index.db_session import TransactionManager
from catalog_index.documents import DocumentBuilder
from catalog_index.errors import IndexRebuildError, RebuildCancelledError
from catalog_index.generations import ENGINE_ERRORS, IndexGenerationManager
from catalog_index.metrics import record_documents_indexed, record_rebuild

logger = logging.getLogger("catalog-rebuild")


class RebuildState(enum.Enum):
    IDLE = "idle"
    PREPARING = "preparing"
    PAGING = "paging"
    FINALIZING = "finalizing"
    SWAPPING = "swapping"
    CLEANING = "cleaning"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RebuildResult:
    state: RebuildState = RebuildState.IDLE
    as_of: datetime.datetime | None = None
    total_items: int = 0
    pages: int = 0
    documents: int = 0
    epoch: int = 0
    elapsed_s: float = 0.0
    shared_generation: bool = False
    transitions: list[RebuildState] = field(default_factory=list)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        data["as_of"] = self.as_of.isoformat() if self.as_of else None
        data["transitions"] = [state.value for state in self.transitions]
        return data


class IndexRebuilder:
    def __init__(
        self,
        *,
        transactions: TransactionManager,
        paginator: CatalogPaginator,
        field_registry: FieldRegistry,
        locale_directory: LocaleDirectory,
        builder: DocumentBuilder,
        generations: IndexGenerationManager,
        namespace: str = INDEX_NAMESPACE,
        clock=datetime.datetime.now,
    ):
        self.transactions = transactions
        self.paginator = paginator
        self.field_registry = field_registry
        self.locale_directory = locale_directory
        self.builder = builder
        self.generations = generations
        self.namespace = namespace
        self.clock = clock
        self.state = RebuildState.IDLE
        self._result = RebuildResult()

    def _transition(self, state: RebuildState) -> None:
        logger.debug("Rebuild state %s -> %s", self.state.value, state.value)
        self.state = state
        self._result.state = state
        self._result.transitions.append(state)

    def rebuild(self, cancel_token: CancellationToken | None = None) -> RebuildResult:
        logger.info("Rebuilding the search index...")
        started = time.perf_counter()
        shared = self.generations.is_shared_generation()
        self.state = RebuildState.IDLE
        self._result = result = RebuildResult(shared_generation=shared, transitions=[RebuildState.IDLE])
        standby = self.generations.standby()

        self._transition(RebuildState.PREPARING)
        saved_context = ambient.snapshot()
        try:
            self.generations.ensure_generations()
            self.generations.clear_all(standby)

            self._transition(RebuildState.PAGING)
            result.as_of = as_of = self.clock()
            result.total_items = total = self._count_active(as_of)
            logger.debug("There are %s total products", total)

            context = None
            page = 0
            while page * self.paginator.page_size < total:
                if cancel_token is not None:
                    cancel_token.raise_if_cancelled()
                context, written = self._build_page(page, as_of, context)
                result.pages += 1
                result.documents += written
                page += 1

            self._transition(RebuildState.FINALIZING)
            self.generations.optimize(standby)

            self._transition(RebuildState.SWAPPING)
            self.generations.swap()

            self._transition(RebuildState.CLEANING)
            if not shared:
                # The standby now holds the previous generation.
                self.generations.clear_all(self.generations.standby())
        except Exception as exc:
            self._transition(RebuildState.FAILED)
            result.elapsed_s = round(time.perf_counter() - started, 3)
            status = "cancelled" if isinstance(exc, RebuildCancelledError) else "failed"
            record_rebuild(status, result.elapsed_s)
            logger.error(
                "Index rebuild %s after %ss in %s: %s", status, result.elapsed_s, result.transitions[-2].value, exc
            )
            raise
        finally:
            # Restore the caller's context whether or not the rebuild succeeded.
            ambient.restore(saved_context)

        self._transition(RebuildState.DONE)
        result.epoch = self.generations.epoch
        result.elapsed_s = round(time.perf_counter() - started, 3)
        record_rebuild("success", result.elapsed_s)
        logger.info(
            "Finished building index in %ss (%s documents, %s pages)",
            result.elapsed_s,
            result.documents,
            result.pages,
        )
        return result

    def _count_active(self, as_of) -> int:
        tx = self.transactions.begin(read_only=True)
        try:
            total = self.paginator.count(tx, as_of)
        except Exception:
            self.transactions.finalize(tx, is_error=True)
            raise
        self.transactions.finalize(tx, is_error=False)
        return total

    def _build_page(self, page: int, as_of, context: IndexingContext | None):
        page_size = self.paginator.page_size
        logger.debug("Building index - page: [%s], pageSize: [%s]", page, page_size)
        started = time.perf_counter()

        tx = self.transactions.begin(read_only=True)
        try:
            items = self.paginator.page(tx, page, as_of)
            descriptors = self.field_registry.all_searchable_field_descriptors(tx)
            if context is None:
                # Locales are read once and reused for every page.
                locales = tuple(self.locale_directory.all_locales(tx))
                context = IndexingContext(namespace=self.namespace, as_of=as_of, locales=locales)

            documents = [self.builder.build(item, descriptors, context.locales, context) for item in items]
            if logger.isEnabledFor(logging.DEBUG):
                for document in documents:
                    logger.debug("%r", document)

            written = self.generations.write_batch(self.generations.standby(), documents)
        except ENGINE_ERRORS as e:
            self.transactions.finalize(tx, is_error=True)
            raise IndexRebuildError("Could not rebuild index") from e
        except Exception:
            self.transactions.finalize(tx, is_error=True)
            raise
        self.transactions.finalize(tx, is_error=False)

        record_documents_indexed(written)
        logger.debug(
            "Built index - page: [%s], pageSize: [%s] in [%.3fs]", page, page_size, time.perf_counter() - started
        )
        return context, written
