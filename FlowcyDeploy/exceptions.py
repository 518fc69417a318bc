"""
Custom exceptions for the Flowcy deployment descriptor.

Exception Hierarchy:
    FlowcyDeployError (base)
    ├── ConfigurationError - Invalid settings or unreadable parameter files
    ├── ExpressionError - Malformed ${{ ... }} expression
    ├── ParameterValidationError - Parameter values rejected before deployment
    ├── DescriptorValidationError - Resource graph violates a contract
    └── DependencyCycleError - Resource dependencies form a cycle
"""

from typing import Optional


class FlowcyDeployError(Exception):
    """Base exception for all descriptor errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(FlowcyDeployError):
    """Raised when settings or parameter sources cannot be loaded."""


class ExpressionError(FlowcyDeployError):
    """
    Raised when an expression cannot be parsed or resolved.

    Example:
        >>> parse_expression("parameters.")
        ExpressionError: Unsupported expression 'parameters.'
    """

    def __init__(self, expression: str, reason: Optional[str] = None):
        self.expression = expression
        message = f"Unsupported expression '{expression}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class _FailureListError(FlowcyDeployError):
    """Carries the ValidationFailure list that caused the rejection."""

    summary = "Validation failed"

    def __init__(self, failures: list):
        self.failures = list(failures)
        lines = [f"{self.summary} ({len(self.failures)} problem(s)):"]
        for failure in self.failures:
            lines.append(f"  - {failure.subject} [{failure.path}]: {failure.reason}")
        super().__init__("\n".join(lines))


class ParameterValidationError(_FailureListError):
    """Raised before any resource is planned when parameter values are invalid."""

    summary = "Deployment parameters rejected"


class DescriptorValidationError(_FailureListError):
    """Raised when the resource graph breaks a contract or the secret plumbing."""

    summary = "Deployment descriptor is invalid"


class DependencyCycleError(FlowcyDeployError):
    """Raised when resource dependencies cannot be ordered."""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(f"Dependency cycle detected: {' -> '.join(self.cycle)}")
