"""
Decorators for error handling, bounded waits, and phase timing.

Wraps Azure DevOps SDK calls so every host API operation fails with a
structured error after a bounded wait instead of hanging the run.
"""

import asyncio
import logging
from functools import wraps
from typing import Callable, TypeVar, Optional

from .constants import Timeouts
from .errors import (
    AzureDevOpsError,
    BadRequestError,
    map_status_code_to_error,
    TimeoutError as ADOTimeoutError
)
from .log_sanitizer import sanitize_error

# Type variable for generic function signatures
T = TypeVar('T')

logger = logging.getLogger(__name__)


def _extract_status_code(error: Exception) -> Optional[int]:
    """Find an HTTP status code on an SDK or msrest exception."""
    status_code = getattr(error, 'status_code', None)

    if not status_code:
        response = getattr(error, 'response', None)
        if response is not None:
            status_code = getattr(response, 'status_code', None)

    # AzureDevOpsServiceError wraps the REST payload in inner_exception
    if not status_code:
        inner = getattr(error, 'inner_exception', None)
        if inner is not None and inner is not error:
            status_code = getattr(inner, 'status_code', None)

    return status_code if isinstance(status_code, int) else None


def _extract_retry_after(error: Exception) -> Optional[int]:
    """Read the Retry-After header from a throttled response, if any."""
    response = getattr(error, 'response', None)
    headers = getattr(response, 'headers', None)
    if not headers:
        return None

    retry_after_header = headers.get('Retry-After') or headers.get('retry-after')
    if not retry_after_header:
        return None

    try:
        return int(retry_after_header)
    except (ValueError, TypeError):
        # HTTP-date format
        logger.warning(f"Could not parse Retry-After header: {retry_after_header}")
        return 60


def handle_ado_error(func: Callable[..., T]) -> Callable[..., T]:
    """
    Turn SDK exceptions into AzureDevOpsError subclasses.

    Errors carrying an HTTP status are mapped by status; anything else
    becomes a plain AzureDevOpsError with a sanitized message.

    Args:
        func: The async function to wrap

    Returns:
        Wrapped function with error handling

    Example:
        @handle_ado_error
        async def get_template(self, template_id: str):
            return await asyncio.to_thread(self.wit_client.get_template, team_context=team, template_id=template_id)
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except AzureDevOpsError:
            raise
        except Exception as e:
            status_code = _extract_status_code(e)

            if status_code:
                extra = {}
                if status_code == 429:
                    extra['retry_after'] = _extract_retry_after(e)

                error = map_status_code_to_error(status_code, original_error=e, **extra)
                logger.error(f"Azure DevOps API error in {func.__name__}: {error}")
                raise error from e

            safe_message = sanitize_error(e)
            logger.error(
                f"Unexpected error in {func.__name__}: {safe_message}",
                exc_info=True
            )
            raise AzureDevOpsError(
                message=f"Unexpected error in {func.__name__}: {safe_message}",
                original_error=e
            ) from e

    return wrapper


def with_timeout(timeout_seconds: float = Timeouts.CLIENT_SECONDS) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Bound the wait for an async operation.

    Args:
        timeout_seconds: Timeout in seconds (default: Timeouts.CLIENT_SECONDS)

    Returns:
        Decorator function

    Example:
        @with_timeout(timeout_seconds=2)
        async def get_team_settings(self):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await asyncio.wait_for(
                    func(*args, **kwargs),
                    timeout=timeout_seconds
                )
            except asyncio.TimeoutError as e:
                logger.error(
                    f"Timeout after {timeout_seconds}s in {func.__name__}"
                )
                raise ADOTimeoutError(
                    timeout_seconds=timeout_seconds,
                    original_error=e
                )

        return wrapper
    return decorator


def validate_work_item_id(func: Callable[..., T]) -> Callable[..., T]:
    """
    Reject a non-positive or non-integer work item id before the call.

    Ensures work_item_id (or the first positional argument after self)
    is a positive integer.

    Args:
        func: The async function to wrap

    Returns:
        Wrapped function with validation
    """
    @wraps(func)
    async def wrapper(*args, **kwargs):
        work_item_id = kwargs.get('work_item_id', kwargs.get('parent_id'))

        # First arg is 'self', second is the id
        if work_item_id is None and len(args) > 1:
            work_item_id = args[1]

        if work_item_id is not None:
            if isinstance(work_item_id, bool) or not isinstance(work_item_id, int) or work_item_id <= 0:
                raise BadRequestError(
                    message=f"Invalid work item ID: {work_item_id}. Must be a positive integer."
                )

        return await func(*args, **kwargs)

    return wrapper


def azure_devops_operation(
    timeout_seconds: float = Timeouts.CLIENT_SECONDS
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Convenience decorator combining timeout and error handling.

    Applies decorators in the correct order:
    1. Timeout wrapper (outermost)
    2. Error handling (innermost)

    Failures are not retried; a failed call fails that one operation.

    Args:
        timeout_seconds: Request timeout in seconds

    Returns:
        Decorator function

    Example:
        @azure_devops_operation()
        async def create_work_item(self, work_item_type, document):
            return await asyncio.to_thread(self.wit_client.create_work_item, ...)
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        decorated = handle_ado_error(func)
        decorated = with_timeout(timeout_seconds)(decorated)
        return decorated

    return decorator


class PerformanceMonitor:
    """
    Context manager and decorator for timing orchestration phases.

    Logs each phase duration at debug level and slow phases as warnings.
    """

    def __init__(self, operation_name: str, warn_threshold_ms: float = 5000.0):
        """
        Initialize performance monitor.

        Args:
            operation_name: Name of the phase being timed
            warn_threshold_ms: Threshold in milliseconds to log warnings (default: 5000)
        """
        self.operation_name = operation_name
        self.warn_threshold_ms = warn_threshold_ms
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None

    @property
    def duration_ms(self) -> Optional[float]:
        """Elapsed time of the last completed phase."""
        if self.start_time is None or self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000

    async def __aenter__(self):
        """Start monitoring."""
        self.start_time = asyncio.get_running_loop().time()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """End monitoring and log results."""
        self.end_time = asyncio.get_running_loop().time()
        duration_ms = self.duration_ms

        if duration_ms > self.warn_threshold_ms:
            logger.warning(
                f"Slow phase: {self.operation_name} took {duration_ms:.1f}ms "
                f"(threshold: {self.warn_threshold_ms:.1f}ms)"
            )
        else:
            logger.debug(f"{self.operation_name} {duration_ms:.1f} ms")

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        """Use as a decorator."""
        @wraps(func)
        async def wrapper(*args, **kwargs):
            async with PerformanceMonitor(
                operation_name=func.__name__,
                warn_threshold_ms=self.warn_threshold_ms
            ):
                return await func(*args, **kwargs)
        return wrapper
