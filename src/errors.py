"""Exception hierarchy for the retrieval engine"""


class RetrievalError(Exception):
    """Base class for all engine errors"""


class ProviderUnavailable(RetrievalError):
    """Embedding provider or vector backend is down or timed out (degrade, don't fail)"""


class IndexStale(RetrievalError):
    """Search requested before any successful index build"""


class AllSignalsUnavailable(RetrievalError):
    """Every retrieval pass failed - nothing to fuse"""

    def __init__(self, errors: dict):
        self.errors = errors
        details = ", ".join(f"{name}: {err}" for name, err in errors.items())
        super().__init__(f"All retrieval signals unavailable ({details})")


class InvalidQuery(RetrievalError):
    """Empty or whitespace-only query"""


class ItemNotFound(RetrievalError):
    """Referenced item id is not part of the corpus"""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")
