"""
Rebuild the catalog search index from the catalog database.

Usage (Docker):
  docker compose run --rm indexer python -m catalog_index.reindex_all
  docker compose run --rm indexer python -m catalog_index.reindex_all --page-size 500
"""

import argparse
import logging
import signal

from catalog_index.cancellation import CancellationToken
from catalog_index.config import INDEX_PAGE_SIZE, SINGLE_INDEX_MODE
from catalog_index.errors import SearchIndexError
from catalog_index.indexer import rebuild_index

logger = logging.getLogger("catalog-reindex")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild the catalog search index and promote it.")
    parser.add_argument(
        "--page-size",
        type=int,
        default=INDEX_PAGE_SIZE,
        help="Catalog items read and written per transaction.",
    )
    parser.add_argument(
        "--single-index",
        action="store_true",
        default=SINGLE_INDEX_MODE,
        help="Clear and rebuild the live index in place instead of swapping in a rebuilt one.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log every page.")
    args = parser.parse_args(argv)
    if args.page_size < 1:
        parser.error("--page-size must be a positive integer")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    # Ctrl+C stops after the current page instead of mid-write.
    token = CancellationToken()
    signal.signal(signal.SIGINT, lambda *_: token.cancel("Interrupted"))

    try:
        result = rebuild_index(cancel_token=token, page_size=args.page_size, single_index=args.single_index)
    except SearchIndexError as e:
        logger.error("reindex_failed: %s", e)
        return 1

    print("reindex_complete")
    print(f"documents={result.documents}")
    print(f"pages={result.pages}")
    print(f"elapsed_s={result.elapsed_s}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
