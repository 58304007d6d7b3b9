import time
import functools
from httpx import ConnectError, ReadError, RemoteProtocolError
import logging

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (ConnectError, ReadError, RemoteProtocolError)


def _is_transient(error: Exception) -> bool:
    if isinstance(error, TRANSIENT_ERRORS):
        return True
    # Intermittent TLS record failures surface as generic errors from the client
    return "DECRYPTION_FAILED_OR_BAD_RECORD_MAC" in str(error)


def retry_on_transient_error(func=None, *, max_retries: int = 3, delay: float = 0.5):
    """
    A decorator to retry a blocking data-store call when the connection
    drops mid-request. Any other error is raised immediately.
    """
    def decorator(inner):
        @functools.wraps(inner)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return inner(*args, **kwargs)
                except Exception as e:
                    if _is_transient(e) and attempt < max_retries - 1:
                        logger.warning(f"Transient error on {inner.__name__}: {e}. Retrying in {delay} seconds... (Attempt {attempt + 1}/{max_retries})")
                        time.sleep(delay)
                    else:
                        raise
        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
