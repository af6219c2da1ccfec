"""
Index generations on Meilisearch.

A generation is one Meilisearch index. Queries always go to the primary uid
("catalog"); the rebuild writes into the reindex uid ("catalog_reindex") and
then promotes it with a single `swap_indexes` task. Meilisearch applies the
swap atomically, so a reader sees either every old document or every new one.
After the swap the reindex uid holds the previous generation, which is then
cleared.

In single-index mode both roles point at the same uid: the index is cleared
before the rebuild and written in place, and swap() does nothing.

Meilisearch writes are asynchronous tasks. `commit()` waits for everything
enqueued since the last commit and fails if any task did not succeed.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Iterable

from meilisearch.errors import MeilisearchApiError, MeilisearchError, MeilisearchTimeoutError

from catalog_index.config import TASK_POLL_INTERVAL_MS, TASK_WAIT_TIMEOUT_MS
from catalog_index.errors import IndexMutationError, IndexRebuildError, SearchEngineError
from catalog_index.fields import ID_FIELD
from catalog_index.metrics import record_generation_swap

logger = logging.getLogger("catalog-generations")

MATCH_ALL_QUERY = "*:*"

# Failures of the engine or of talking to it, as opposed to bugs in our code.
ENGINE_ERRORS = (MeilisearchError, SearchEngineError, OSError)


@dataclass(frozen=True)
class IndexGeneration:
    uid: str


def _task_uid(task_info: Any) -> int:
    return task_info.task_uid


class MeilisearchTarget:
    """
    add / commit / optimize / delete_by_query against one Meilisearch index.
    """

    def __init__(self, client, uid: str, *, timeout_ms: int = TASK_WAIT_TIMEOUT_MS, interval_ms: int = TASK_POLL_INTERVAL_MS):
        self.client = client
        self.uid = uid
        self.timeout_ms = timeout_ms
        self.interval_ms = interval_ms
        self._pending: list[int] = []

    @property
    def index(self):
        return self.client.index(self.uid)

    def add(self, documents: list[dict]) -> None:
        self._pending.append(_task_uid(self.index.add_documents(documents, primary_key=ID_FIELD)))

    def delete_by_query(self, query: str) -> None:
        if query == MATCH_ALL_QUERY:
            task_info = self.index.delete_all_documents()
        else:
            task_info = self.index.delete_documents(filter=query)
        self._pending.append(_task_uid(task_info))

    def wait(self, task_uid: int):
        task = self.client.wait_for_task(task_uid, timeout_in_ms=self.timeout_ms, interval_in_ms=self.interval_ms)
        if task.status != "succeeded":
            raise SearchEngineError(
                f"Meilisearch task {task_uid} on {self.uid!r} ended as {task.status}: {task.error}",
                task=task,
            )
        return task

    def commit(self) -> None:
        pending, self._pending = self._pending, []
        for task_uid in pending:
            self.wait(task_uid)

    def optimize(self) -> None:
        """
        Settle the index: finish outstanding tasks, then wait until Meilisearch
        reports it is no longer indexing.
        """
        self.commit()
        deadline = time.monotonic() + self.timeout_ms / 1000.0
        while self.index.get_stats().is_indexing:
            if time.monotonic() >= deadline:
                raise MeilisearchTimeoutError(f"Index {self.uid!r} still indexing after {self.timeout_ms}ms")
            time.sleep(self.interval_ms / 1000.0)

    def ensure_exists(self) -> None:
        try:
            self.client.get_index(self.uid)
            return
        except MeilisearchApiError as e:
            if getattr(e, "code", None) != "index_not_found":
                raise
        logger.info("Creating index %r", self.uid)
        self.wait(_task_uid(self.client.create_index(self.uid, {"primaryKey": ID_FIELD})))


class IndexGenerationManager:
    """
    Owns the active and standby generations and every mutation of them.

    swap() and clear_all() are serialized by one lock so a post-swap clear can
    never interleave with a swap. `epoch` counts successful swaps.
    """

    def __init__(
        self,
        client,
        primary_uid: str,
        reindex_uid: str | None = None,
        *,
        single_index: bool = False,
        timeout_ms: int = TASK_WAIT_TIMEOUT_MS,
        interval_ms: int = TASK_POLL_INTERVAL_MS,
    ):
        self.client = client
        self._shared = single_index or not reindex_uid or reindex_uid == primary_uid
        standby_uid = primary_uid if self._shared else reindex_uid
        self._active = IndexGeneration(primary_uid)
        self._standby = IndexGeneration(standby_uid)
        self._targets = {
            uid: MeilisearchTarget(client, uid, timeout_ms=timeout_ms, interval_ms=interval_ms)
            for uid in {primary_uid, standby_uid}
        }
        self._lock = threading.RLock()
        self.epoch = 0

    def is_shared_generation(self) -> bool:
        return self._shared

    def active(self) -> IndexGeneration:
        return self._active

    def standby(self) -> IndexGeneration:
        return self._standby

    def target(self, generation: IndexGeneration) -> MeilisearchTarget:
        return self._targets[generation.uid]

    def ensure_generations(self) -> None:
        """Create missing generations; the swap needs both to exist."""
        try:
            for target in self._targets.values():
                target.ensure_exists()
        except ENGINE_ERRORS as e:
            raise IndexRebuildError("Could not prepare index generations") from e

    def clear_all(self, generation: IndexGeneration) -> None:
        with self._lock:
            target = self.target(generation)
            logger.debug("Deleting by query: %s on %r", MATCH_ALL_QUERY, generation.uid)
            try:
                target.delete_by_query(MATCH_ALL_QUERY)
                target.commit()
            except ENGINE_ERRORS as e:
                raise IndexMutationError("Could not delete documents") from e

    def write_batch(self, generation: IndexGeneration, documents: Iterable[Any]) -> int:
        """
        Add a batch and commit it. An empty batch sends nothing.

        Engine errors propagate unwrapped: the caller owns the transaction
        that has to be rolled back.
        """
        payload = [doc.to_dict() if hasattr(doc, "to_dict") else dict(doc) for doc in documents]
        if not payload:
            return 0
        target = self.target(generation)
        target.add(payload)
        target.commit()
        return len(payload)

    def optimize(self, generation: IndexGeneration) -> None:
        logger.debug("Optimizing index %r...", generation.uid)
        try:
            self.target(generation).optimize()
        except ENGINE_ERRORS as e:
            raise IndexRebuildError("Could not rebuild index") from e

    def swap(self) -> None:
        if self._shared:
            logger.debug("Single index mode; nothing to swap")
            return
        with self._lock:
            active, standby = self._active, self._standby
            try:
                task_info = self.client.swap_indexes([{"indexes": [active.uid, standby.uid]}])
                self.target(active).wait(_task_uid(task_info))
            except ENGINE_ERRORS as e:
                raise IndexRebuildError("Could not swap index generations") from e
            self.epoch += 1
        record_generation_swap()
        logger.info("Promoted rebuilt generation into %r (epoch %s)", active.uid, self.epoch)
