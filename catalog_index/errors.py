class SearchIndexError(Exception):
    """Base error for index maintenance failures the caller is expected to handle."""


class IndexMutationError(SearchIndexError):
    """Deleting documents from a generation failed."""


class IndexRebuildError(SearchIndexError):
    """The rebuild could not write, optimize or promote the new generation."""


class RebuildCancelledError(SearchIndexError):
    """The rebuild observed a cancellation request between pages."""


class RebuildInProgressError(SearchIndexError):
    """Another rebuild is already running in this process."""


class SearchEngineError(RuntimeError):
    """The engine accepted a task but did not complete it successfully."""

    def __init__(self, message, task=None):
        super().__init__(message)
        self.task = task


class PropertyPathError(LookupError):
    """A field property path could not be parsed or resolved against an item."""
