import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

log = logging.getLogger(__name__)

class AppError(Exception):
    """Base exception class for application-specific errors."""

    error_code = "app_error"

    def __init__(self, message=None, details=None, status_code=None):
        super().__init__(message)
        self.message = message or "An unexpected error occurred"
        self.details = details
        self.status_code = status_code or 500

    def to_dict(self):
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }

class ValidationError(AppError):
    """Exception for data validation errors."""

    error_code = "validation_error"

    def __init__(self, message=None, details=None):
        super().__init__(
            message=message or "Validation error",
            details=details,
            status_code=400
        )

class ResourceNotFoundError(AppError):
    """Exception for requests to non-existent resources."""

    error_code = "not_found"

    def __init__(self, message=None, details=None):
        super().__init__(
            message=message or "Resource not found",
            details=details,
            status_code=404
        )

class SyncError(AppError):
    """Base class for errors raised by the sync engine."""

    error_code = "sync_error"
    retryable = False

    def __init__(self, message=None, details=None, status_code=None):
        super().__init__(
            message=message or "Sync error",
            details=details,
            status_code=status_code or 502
        )

class TransientNetworkError(SyncError):
    """Network failure or upstream 5xx; retried on a later cycle with backoff."""

    error_code = "transient_network_error"
    retryable = True

    def __init__(self, message=None, details=None):
        super().__init__(message=message or "Upstream unavailable", details=details, status_code=503)

class AuthExpiredError(SyncError):
    """The bearer credential was rejected even after one refresh."""

    error_code = "auth_expired"
    retryable = True

    def __init__(self, message=None, details=None):
        super().__init__(message=message or "Upstream credential expired", details=details, status_code=401)

class RateLimitExceededError(SyncError):
    """Upstream call budget exhausted; the rest of the cycle is deferred."""

    error_code = "rate_limit_exceeded"

    def __init__(self, message=None, details=None, zone=None, reset_after=None):
        super().__init__(message=message or "Upstream rate limit exceeded", details=details, status_code=429)
        self.zone = zone
        self.reset_after = reset_after

class UpstreamRejectedItemError(SyncError):
    """Upstream refused a single item; scoped to that item's queue entry."""

    error_code = "upstream_rejected_item"

    def __init__(self, message=None, details=None, upstream_id=None):
        super().__init__(message=message or "Upstream rejected item", details=details, status_code=422)
        self.upstream_id = upstream_id

class ConflictApplyError(SyncError):
    """A resolution could not be applied to the local store. Indicates a bug."""

    error_code = "conflict_apply_error"

    def __init__(self, message=None, details=None):
        super().__init__(message=message or "Failed to apply conflict resolution", details=details, status_code=500)

def register_error_handlers(app):
    """Register application error handlers."""

    @app.errorhandler(AppError)
    def handle_app_error(e):
        """Handle application specific errors."""
        if e.status_code >= 500:
            log.error(f"{e.error_code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        """Handle Werkzeug HTTP exceptions."""
        return jsonify({
            "error": e.name.lower().replace(" ", "_"),
            "message": e.description,
            "details": None
        }), e.code

    @app.errorhandler(500)
    def internal_server_error(e):
        """Handle 500 errors."""
        return jsonify({
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "details": None
        }), 500
