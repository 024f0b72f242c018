"""Custom exceptions for clearer error handling across the package."""


class PolitradeError(Exception):
    """Base exception for all package errors."""


class ValidationError(PolitradeError):
    """Raised when caller input is invalid. Always fatal at the boundary."""


class InvalidSignalError(ValidationError):
    """Raised when a trade signal fails ticker or field validation."""


class UnknownStrategyError(ValidationError):
    """Raised when a strategy name is not registered."""


class ConfigError(PolitradeError):
    """Raised when environment configuration is invalid or missing."""


class SafetyError(ConfigError):
    """Raised when live trading is requested without explicit confirmation."""


class StrategyError(PolitradeError):
    """Raised when a strategy cannot produce target positions."""


class DataUnavailableError(PolitradeError):
    """Raised when price data for a symbol cannot be obtained."""


class BrokerError(PolitradeError):
    """Raised when brokerage API operations fail outside order placement."""
