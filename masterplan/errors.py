# Custom exception hierarchy for the production planning engine.
# Version: 1.0.0
# Provides structured error handling with field-level context and user-friendly messages.

from typing import Any


class MasterPlanError(Exception):
    """Base exception for all planning engine errors.

    All custom exceptions inherit from this class to allow catching
    any planning-related error with a single except clause.

    Attributes:
        message: Human-readable error description.
        details: Additional context for debugging.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize the planning error.

        Args:
            message: Human-readable error description.
            details: Optional dictionary of additional context.
        """
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return formatted error message with details."""
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} [{detail_str}]"
        return self.message


class ValidationError(MasterPlanError):
    """Raised when a production row or event record fails validation.

    The row normalizer raises it internally for rows it cannot use; the
    error is caught there and the row is counted as skipped.

    Attributes:
        field: Name of the field that failed validation.
        value: The invalid value that was provided.
        reason: Explanation of why the value is invalid.
        row: Optional row number in the data source.
    """

    def __init__(
        self,
        field: str,
        value: Any,
        reason: str,
        row: int | None = None
    ) -> None:
        """Initialize the validation error.

        Args:
            field: Name of the field that failed validation.
            value: The invalid value provided.
            reason: Explanation of why validation failed.
            row: Optional row number (1-indexed) for spreadsheet errors.
        """
        self.field = field
        self.value = value
        self.reason = reason
        self.row = row

        details = {"field": field, "value": repr(value)}
        if row is not None:
            details["row"] = row

        location = f" in row {row}" if row else ""
        message = f"Invalid {field}{location}: {reason}. Got: {repr(value)}"
        super().__init__(message, details)


class ConfigurationError(MasterPlanError):
    """Raised when configuration data is invalid or missing.

    Used for errors in planning.yaml such as unknown process kinds,
    empty machine pools or malformed working hours.

    Attributes:
        config_source: Name of the configuration source (key, file, etc.).
        issue: Description of the configuration problem.
    """

    def __init__(self, config_source: str, issue: str) -> None:
        """Initialize the configuration error.

        Args:
            config_source: Name of the configuration source.
            issue: Description of what's wrong with the configuration.
        """
        self.config_source = config_source
        self.issue = issue

        message = f"Configuration error in {config_source}: {issue}"
        super().__init__(message, {"source": config_source})


class FileLoadError(MasterPlanError):
    """Raised when a required file cannot be loaded.

    Covers file not found, permission denied, corrupted files, and
    unexpected file format issues.

    Attributes:
        filepath: Path to the file that failed to load.
        cause: The underlying exception that caused the failure.
    """

    def __init__(self, filepath: str, cause: Exception) -> None:
        """Initialize the file load error.

        Args:
            filepath: Path to the file that failed to load.
            cause: The underlying exception.
        """
        self.filepath = filepath
        self.cause = cause

        # Extract just the filename for cleaner messages
        filename = filepath.split("/")[-1].split("\\")[-1]
        cause_type = type(cause).__name__

        message = f"Failed to load {filename}: {cause_type} - {cause}"
        super().__init__(message, {"filepath": filepath, "cause_type": cause_type})


class MissingDependencyError(MasterPlanError):
    """Raised by the strict scheduler when a dependency was never scheduled.

    In the default (tolerant) mode the scheduler logs the gap and treats
    the task as if the dependency did not exist.

    Attributes:
        task_id: Task whose dependency could not be resolved.
        missing: Dependency ids absent from the scheduled set.
    """

    def __init__(self, task_id: str, missing: list[str]) -> None:
        self.task_id = task_id
        self.missing = missing

        message = f"Task {task_id} depends on {len(missing)} unscheduled task(s)"
        super().__init__(message, {"task_id": task_id, "missing": ", ".join(missing)})


class SyncError(MasterPlanError):
    """Raised when a request to the remote event store fails.

    Covers transport errors, non-2xx responses and undecodable bodies.
    The sync coordinator catches it, logs it and waits for the next tick.

    Attributes:
        operation: Name of the client operation (fetch_since, save_events, ...).
        cause: The underlying exception.
    """

    def __init__(self, operation: str, cause: Exception) -> None:
        self.operation = operation
        self.cause = cause

        cause_type = type(cause).__name__
        message = f"Sync operation {operation} failed: {cause_type} - {cause}"
        super().__init__(message, {"operation": operation, "cause_type": cause_type})


class PersistenceError(MasterPlanError):
    """Raised by a persistence back end when reading or writing fails.

    Never escapes the persistence collaborator: load() reports it as None
    and save() as False.

    Attributes:
        operation: "load" or "save".
        cause: The underlying exception.
    """

    def __init__(self, operation: str, cause: Exception) -> None:
        self.operation = operation
        self.cause = cause

        message = f"Persistence {operation} failed: {type(cause).__name__} - {cause}"
        super().__init__(message, {"operation": operation})
