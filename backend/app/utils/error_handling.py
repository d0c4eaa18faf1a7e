"""Centralized error handling utilities for secure error responses.

Maps the engine's error taxonomy onto HTTP responses:
- Full details logged server-side only
- Safe, credential-free messages returned to the caller
"""

import logging
from typing import NoReturn

from fastapi import HTTPException

from app.exceptions import (
    AuthenticationError,
    ConfigurationError,
    DecryptionError,
    InfraDeckError,
    InvalidActionError,
    NotFoundError,
    RemoteAPIError,
    SessionBindingError,
)
from app.utils.security import sanitize_log_message


def safe_error_response(
    logger_instance: logging.Logger,
    error: Exception,
    user_message: str,
    status_code: int = 500,
    log_level: str = "error",
) -> NoReturn:
    """Log full error details server-side and raise generic HTTPException for user.

    Args:
        logger_instance: Logger instance to use for server-side logging
        error: The exception that was caught
        user_message: Generic message to show to the user (should not contain sensitive details)
        status_code: HTTP status code for the response (default: 500)
        log_level: Logging level to use (error, warning, info) (default: error)

    Raises:
        HTTPException: With the user_message as detail
    """
    log_method = getattr(logger_instance, log_level, logger_instance.error)
    log_method(f"{user_message}: {type(error).__name__}", exc_info=True)

    raise HTTPException(status_code=status_code, detail=user_message)


def raise_for_engine_error(logger_instance: logging.Logger, error: InfraDeckError) -> NoReturn:
    """Translate a vault/control-plane error into an HTTPException.

    Messages of remote and authentication errors are surfaced (they never
    contain credentials); decryption and configuration problems are logged
    in full and reported generically.

    Raises:
        HTTPException: Always
    """
    message = sanitize_log_message(str(error))

    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=404, detail=message)
    if isinstance(error, InvalidActionError):
        raise HTTPException(status_code=400, detail=message)
    if isinstance(error, AuthenticationError):
        logger_instance.warning(message)
        raise HTTPException(status_code=502, detail=message)
    if isinstance(error, RemoteAPIError):
        logger_instance.warning(message)
        raise HTTPException(
            status_code=502,
            detail={"error": message, "remote_status": error.status},
        )
    if isinstance(error, DecryptionError):
        safe_error_response(
            logger_instance,
            error,
            "Stored credential could not be decrypted. Check the encryption key or re-enter the credential.",
        )
    if isinstance(error, ConfigurationError):
        safe_error_response(logger_instance, error, "Server is not configured correctly")
    if isinstance(error, SessionBindingError):
        safe_error_response(logger_instance, error, "Internal session error")

    safe_error_response(logger_instance, error, "Operation failed")
