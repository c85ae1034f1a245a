"""
Error taxonomy for the toolkit backend.

Each error carries the HTTP status code the API layer answers with, so the
FastAPI exception handler in ``main`` can render any of them uniformly as
``{"error": message}``.
"""

from __future__ import annotations


class ToolkitError(Exception):
    status_code = 500


class ValidationError(ToolkitError):
    """Malformed request: bad body shape, unsupported target, bad parameter."""

    status_code = 400


class UploadTooLarge(ValidationError):
    status_code = 413


class NotFound(ToolkitError):
    status_code = 404


class FeatureUnavailable(ToolkitError):
    """A required external tool is not installed."""

    status_code = 501


class ConverterUnavailable(FeatureUnavailable):
    pass


class PipelineFailure(ToolkitError):
    """Any error raised while a job body executes."""

    status_code = 500


class ConversionFailed(PipelineFailure):
    """An external tool ran but did not produce a usable output."""


class StorageIOError(ToolkitError):
    status_code = 500
