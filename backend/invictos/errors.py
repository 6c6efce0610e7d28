# Overview: Maps domain exceptions to JSON error responses for every blueprint.

from flask import jsonify, current_app
from werkzeug.exceptions import HTTPException

from .validation import ValidationError, ConflictError, PermissionDeniedError
from .services.entity_store import NotFoundError, StoreUnavailableError
from .services.sales_service import SaleError
from .services.recovery_service import RecoveryError


def _error(message: str, status: int, **extra):
    body = {"error": message}
    body.update(extra)
    return jsonify(body), status


def handle_validation_error(e: ValidationError):
    return _error(str(e), 400)


def handle_conflict_error(e: ConflictError):
    return _error(str(e), 409)


def handle_permission_denied(e: PermissionDeniedError):
    return jsonify({"error": "Permission denied", "message": str(e)}), 403


def handle_not_found(e: NotFoundError):
    return _error(str(e), 404, collection=e.collection, id=e.entity_id)


def handle_store_unavailable(e: StoreUnavailableError):
    # Transient: the client shows a retry button, nothing is retried here
    current_app.logger.error("Entity store unavailable: %s", e.__cause__ or e)
    return _error("Store unavailable, please retry", 503, retryable=True)


def handle_sale_error(e: SaleError):
    return _error(str(e), 400, details=e.details)


def handle_recovery_error(e: RecoveryError):
    return _error(str(e), 400)


def handle_unexpected(e: Exception):
    if isinstance(e, HTTPException):
        return e
    current_app.logger.exception("Unhandled error")
    return _error("Internal server error", 500)


def register_error_handlers(app) -> None:
    app.register_error_handler(ValidationError, handle_validation_error)
    app.register_error_handler(ConflictError, handle_conflict_error)
    app.register_error_handler(PermissionDeniedError, handle_permission_denied)
    app.register_error_handler(NotFoundError, handle_not_found)
    app.register_error_handler(StoreUnavailableError, handle_store_unavailable)
    app.register_error_handler(SaleError, handle_sale_error)
    app.register_error_handler(RecoveryError, handle_recovery_error)
    app.register_error_handler(Exception, handle_unexpected)
