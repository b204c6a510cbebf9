"""Custom exception classes for the PDF translator.

This module defines the exception hierarchy used across the service so that
callers can tell capacity problems, bad input, transient upstream failures and
permanent failures apart.

Exception Hierarchy:
    TranslatorError (base)
    ├── ConfigurationError
    │   ├── InvalidConfigError
    │   └── MissingConfigError
    ├── AdmissionRejectedError
    ├── InputInvalidError
    ├── RenderError
    ├── StageCallError
    │   ├── RetryableStageError
    │   ├── PermanentStageError
    │   └── RetriesExhaustedError
    ├── PageProcessingError
    ├── TaskCancelledError
    ├── TaskError
    │   ├── TaskNotFoundError
    │   ├── TaskExpiredError
    │   └── RetryRejectedError
    ├── AssemblyError
    └── FileSaveError

Usage:
    try:
        task_id = controller.submit(data, "paper.pdf")
    except AdmissionRejectedError as e:
        # Tell the client to come back later
        logger.warning("Busy: %s", e)
    except InputInvalidError as e:
        logger.info("Rejected upload: %s", e)
"""

from __future__ import annotations


class TranslatorError(Exception):
    """Base exception for all translator errors.

    All custom exceptions in the package inherit from this class, so a single
    handler can catch every expected failure.
    """


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(TranslatorError):
    """Base exception for configuration-related errors."""


class InvalidConfigError(ConfigurationError):
    """Raised when configuration values are invalid or malformed.

    Examples:
        - Non-positive batch size
        - Malformed YAML
        - Negative retry count
    """


class MissingConfigError(ConfigurationError):
    """Raised when required configuration is missing.

    Examples:
        - Missing API key
        - Missing API base URL
    """


# ============================================================================
# Submission Errors
# ============================================================================


class AdmissionRejectedError(TranslatorError):
    """Raised when the concurrent task ceiling has been reached."""

    def __init__(self, limit: int):
        super().__init__(f"Service busy: {limit} task(s) already running, please retry later")
        self.limit = limit


class InputInvalidError(TranslatorError):
    """Raised when an uploaded document is rejected.

    Examples:
        - Payload larger than the size ceiling
        - Missing %PDF magic bytes
        - Empty upload
    """


# ============================================================================
# Pipeline Errors
# ============================================================================


class RenderError(TranslatorError):
    """Raised when a document cannot be rasterized.

    Never retried: a missing rasterizer binary or a corrupt PDF will not fix itself.
    """


class StageCallError(TranslatorError):
    """Base exception for recognition and translation call failures."""


class RetryableStageError(StageCallError):
    """Transient failure: network timeout, connection failure or upstream 5xx."""


class PermanentStageError(StageCallError):
    """Non-transient failure: 4xx status, unparsable response or unexpected error."""


class RetriesExhaustedError(StageCallError):
    """Raised when a retryable failure persisted through every retry."""

    def __init__(self, message: str, retries: int):
        super().__init__(f"{message} (retried {retries} times)")
        self.retries = retries


class PageProcessingError(TranslatorError):
    """Raised when a single page fails in the recognition or translation stage."""

    def __init__(self, page_num: int, stage: str, message: str):
        super().__init__(f"Page {page_num} {stage} failed: {message}")
        self.page_num = page_num
        self.stage = stage


class TaskCancelledError(TranslatorError):
    """Raised inside a task attempt once the task has been cancelled."""

    def __init__(self, message: str = "Task cancelled"):
        super().__init__(message)


class AssemblyError(TranslatorError):
    """Raised when the translated PDF cannot be generated."""


class FileSaveError(TranslatorError):
    """Raised when a file that the service depends on cannot be written."""


# ============================================================================
# Task Errors
# ============================================================================


class TaskError(TranslatorError):
    """Base exception for task lookup and lifecycle requests."""


class TaskNotFoundError(TaskError):
    """Raised when a task id is unknown."""


class TaskExpiredError(TaskError):
    """Raised when a retry is requested but the original input is gone."""


class RetryRejectedError(TaskError):
    """Raised when a retry is not legal for the task's current state."""
