class EngineError(Exception):
    """Base class for engine errors."""


class MarketDataUnavailable(EngineError):
    """Every upstream sentiment source failed; callers may retry later."""


class PersistenceError(EngineError):
    """A storage write or read failed."""


class AllocationNotFound(EngineError):
    pass


class LayerNotFound(EngineError):
    pass


class UnknownStrategy(EngineError):
    pass


class FeedbackAlreadyRecorded(EngineError):
    """Realized outcome fields on a sentiment record are write-once."""


class NothingToRebalance(EngineError):
    """No layer of the allocation is active under the current sentiment."""
