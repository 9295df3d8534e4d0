"""
Error taxonomy for MDB_HELPERS.

Configuration and connection errors surface at startup; transient and
exhaustion errors come from the reset engine. All derive from
MongoHelpersError, itself a RuntimeError.
"""

from typing import Any, Dict, List, Optional


class MongoHelpersError(RuntimeError):
    """
    Base exception for MDB_HELPERS errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (collection_name,
                 attempts, etc.)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class InvalidConfigurationError(MongoHelpersError):
    """
    Raised when configuration is invalid or missing.

    Raised synchronously by init_connection() when no connection URI is
    given, and by config validation for out-of-range values.

    Attributes:
        message: Error message
        config_key: Configuration key that caused the error (if available)
        config_value: Configuration value that caused the error (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        if config_value is not None:
            context["config_value"] = config_value
        super().__init__(message, context=context)
        self.config_key = config_key
        self.config_value = config_value


class InitializationError(MongoHelpersError):
    """
    Raised when the connection could not be opened.

    Attributes:
        message: Error message
        mongo_uri: MongoDB connection URI (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        mongo_uri: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if mongo_uri:
            context["mongo_uri"] = mongo_uri
        super().__init__(message, context=context)
        self.mongo_uri = mongo_uri


class DatabaseConnectionRefusedError(InitializationError):
    """
    Raised when the server refuses the transport connection.

    This is a fatal environment problem: it is never swallowed and never
    retried.
    """


class TransientOperationError(MongoHelpersError):
    """
    Raised when one attempt of a reset batch fails.

    Attributes:
        operation: Name of the batch operation
        collection_names: Collections enumerated for the failed attempt
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        collection_names: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if operation:
            context["operation"] = operation
        super().__init__(message, context=context)
        self.operation = operation
        self.collection_names = collection_names or []


class RetryExhaustedError(MongoHelpersError):
    """
    Raised when a reset batch kept failing for every allowed attempt.

    Attributes:
        operation: Name of the batch operation
        attempts: Number of attempts made
        last_error: Error raised by the final attempt
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        attempts: int = 0,
        last_error: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = context or {}
        if operation:
            context["operation"] = operation
        context["attempts"] = attempts
        super().__init__(message, context=context)
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class ShutdownError(MongoHelpersError):
    """
    Describes a failed close. Logged by shutdown(), never raised to its caller.
    """


class ModelNotFoundError(MongoHelpersError):
    """Raised when a model name is not present in the registry."""

    def __init__(self, model_name: Optional[str]) -> None:
        super().__init__(f"no such model as {model_name}")
        self.model_name = model_name


class UniqueConstraintError(MongoHelpersError):
    """
    Raised by the uniqueness validator before a save would violate a
    unique index.

    Attributes:
        model_name: Model whose document failed validation
        keys: Fields of the violated unique index
    """

    def __init__(
        self,
        message: str,
        model_name: Optional[str] = None,
        keys: Optional[List[str]] = None,
    ) -> None:
        context: Dict[str, Any] = {}
        if model_name:
            context["model_name"] = model_name
        if keys:
            context["keys"] = keys
        super().__init__(message, context=context)
        self.model_name = model_name
        self.keys = keys or []
