"""Centralized error handling utilities for secure error responses.

This module converts flow failures into HTTP responses without leaking
internal detail to the visitor:
- Client errors (forged, replayed or malformed callbacks) are logged briefly
- Server and upstream errors are logged with full stack traces
- The visitor only ever sees the error's fixed public message

Security:
    - CWE-209: Generation of Error Message Containing Sensitive Information
    - CWE-497: Exposure of Sensitive System Information to an Unauthorized Control Sphere
"""

import logging
from typing import NoReturn

from fastapi import HTTPException

from codegrant.exceptions import OAuth2FlowError
from codegrant.utils.security import sanitize_log_message


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

    raise HTTPException(status_code=status_code, detail=user_message) from error


def raise_flow_http_error(
    logger_instance: logging.Logger,
    error: OAuth2FlowError,
    provider: str,
) -> NoReturn:
    """Translate an aborted flow into an HTTPException.

    Client errors are logged at WARNING without a stack trace; everything
    else goes through safe_error_response so the trace stays server-side.

    Args:
        logger_instance: Logger of the calling route module
        error: The flow error that aborted the attempt
        provider: Provider name from the route (untrusted)

    Raises:
        HTTPException: With the error's status code and public detail
    """
    failed_at = getattr(error.failed_at, "value", error.failed_at)
    if error.is_client_error:
        logger_instance.warning(
            "OAuth2 flow rejected for provider %s at %s: %s (%s)",
            sanitize_log_message(provider),
            failed_at,
            type(error).__name__,
            sanitize_log_message(str(error)),
        )
        raise HTTPException(status_code=error.status_code, detail=error.public_detail) from error

    logger_instance.error(
        "OAuth2 flow failed for provider %s at %s",
        sanitize_log_message(provider),
        failed_at,
    )
    safe_error_response(
        logger_instance,
        error,
        error.public_detail,
        status_code=error.status_code,
    )
