"""Engine error classes."""


class PawScriptError(Exception):
    """Base error for the analytics engine."""
    pass


class MalformedScheduleError(PawScriptError):
    """A single medication plan cannot be expanded."""
    
    def __init__(self, reason: str, medication_id: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.medication_id = medication_id


class NormalizationError(PawScriptError):
    """A raw store document cannot be turned into an engine value."""
    pass


class ContractViolationError(PawScriptError, ValueError):
    """Caller passed arguments the engine never accepts."""
    pass
