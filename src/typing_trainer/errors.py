"""Engine error types."""


class EngineError(Exception):
    """Base class for adaptive engine errors."""


class InvalidInput(EngineError):
    """Raised for negative latency, unknown ids, or snapshots violating an invariant."""


class UnknownItem(InvalidInput):
    """Raised when a character, sentence, session or history id is not known."""

    def __init__(self, kind: str, item_id: str) -> None:
        super().__init__(f"Unknown {kind}: {item_id}")
        self.kind = kind
        self.item_id = item_id


class DuplicateAttempt(InvalidInput):
    """Raised when an attempt event has already been applied."""

    def __init__(self, event_id: str) -> None:
        super().__init__(f"Attempt already recorded: {event_id}")
        self.event_id = event_id


class EmptyCandidateSet(EngineError):
    """Raised by the selector when there is nothing at all to practice."""
