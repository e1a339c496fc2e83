"""Custom exceptions for pricing."""


class ConfigurationMissing(Exception):
    """Raised when no active pricing configuration exists."""
    code = "pricing_configuration_missing"

    def __init__(self, message="No active pricing configuration"):
        super().__init__(message)
        self.message = message
        self.extra = {}


class UnknownServiceError(ValueError):
    """Raised when a fare is requested for a service the configuration does not price."""
    pass
