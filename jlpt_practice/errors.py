"""Error taxonomy for the practice core.

All of these are recoverable. The session controller and the progress ledger
turn them into states or results; routers turn them into HTTP responses.
"""


class PracticeError(Exception):
    """Base class for practice core errors."""


class EmptyPool(PracticeError):
    """Selection criteria matched no items.

    ``store_loaded`` is False when the item store has never been populated,
    so callers can tell "nothing matches" apart from "nothing synced yet".
    """

    def __init__(self, message: str = "No practice items match the selection", store_loaded: bool = True):
        super().__init__(message)
        self.store_loaded = store_loaded


class InsufficientPool(PracticeError):
    """The pool is too small to build a question from."""


class StorageUnavailable(PracticeError):
    """The persistence layer failed; retrying may succeed."""


class StaleGeneration(PracticeError):
    """A superseded init/resync finished after a newer one started.

    Internal signal only; never surfaced to API clients.
    """

    def __init__(self, generation: int, current: int):
        super().__init__(f"Generation {generation} superseded by {current}")
        self.generation = generation
        self.current = current


class InvalidTransition(PracticeError):
    """A session operation was called in a state that does not allow it."""
