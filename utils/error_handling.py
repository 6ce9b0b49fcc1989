# ABOUTME: Error logging helpers shared by API route handlers
# ABOUTME: Logs failures with endpoint context and returns the message sent to the client

import logging

logger = logging.getLogger(__name__)


def describe_error(error: BaseException) -> str:
    """Return the error string surfaced to API clients."""
    message = str(error).strip()
    return message or type(error).__name__


def format_user_error(error: BaseException, context: str) -> str:
    """
    Log an exception raised while serving a request.

    Args:
        error: Exception that was raised
        context: Short identifier for where it happened (e.g. 'api_posts')

    Returns:
        Error description suitable for the "details" field of a JSON response
    """
    logger.error("[%s] %s: %s", context, type(error).__name__, error, exc_info=error)
    return describe_error(error)
