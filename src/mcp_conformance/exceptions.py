"""Exception types raised by the conformance engine."""


class ConformanceError(Exception):
    """Base class for conformance engine errors."""
    pass


class SetupError(ConformanceError):
    """Raised when a harness server or spawned process never became reachable."""
    pass


class BaselineError(ConformanceError):
    """Raised when an expected-failures file has an invalid structure."""
    pass


class ScenarioNotFoundError(ConformanceError):
    """Raised when a scenario name is not in the registry."""

    def __init__(self, name: str):
        super().__init__(f"Unknown scenario: {name}")
        self.name = name


class ScenarioStateError(ConformanceError):
    """Raised when a lifecycle method is called in the wrong state."""
    pass


class AuthFlowError(ConformanceError):
    """Raised when the authorization flow cannot proceed."""
    pass


class InvalidAssertionError(ConformanceError):
    """Raised when a JWT assertion fails signature or claim validation."""
    pass
