"""Error taxonomy for the position engine.

PreconditionError subclasses are raised before any store write and carry a
message that can be shown to the user as-is. SettlementError wraps a store
failure inside a unit of work; its message stays generic and the original
exception is chained.
"""


class EngineError(Exception):
    """Base class for all engine errors."""


class PreconditionError(EngineError):
    """A user action was rejected before touching the store."""


class InsufficientBalanceError(PreconditionError):
    pass


class AmountBelowMinimumError(PreconditionError):
    pass


class PositionNotFoundError(PreconditionError):
    pass


class PositionOwnershipError(PreconditionError):
    pass


class PositionStateError(PreconditionError):
    """Position is in a status that does not allow the requested transition."""


class CopyTradingDisabledError(PreconditionError):
    pass


class SymbolUnavailableError(PreconditionError):
    pass


class InvalidLeverageError(PreconditionError):
    pass


class InvalidDirectionError(PreconditionError):
    pass


class UserNotFoundError(PreconditionError):
    pass


class SettlementError(EngineError):
    """A store write failed inside a settlement or open unit of work."""
