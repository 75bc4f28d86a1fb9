"""
Exceptions raised while creating child tasks.

Every failure of a host API call surfaces as an AzureDevOpsError subclass
chosen by HTTP status, so callers can tell a missing parent from an expired
token or a rejected template value without parsing SDK messages.
"""

from typing import Optional, Any


class AzureDevOpsError(Exception):
    """
    Base exception for Azure DevOps API errors.

    Subclasses set default_status and default_message; both can be
    overridden per instance.

    Attributes:
        status_code: HTTP status code from the API response
        message: Human-readable error message
        original_error: The SDK exception that was caught
        details: Additional error details
    """

    default_status: Optional[int] = None
    default_message = "Azure DevOps API error"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
        details: Optional[Any] = None
    ):
        self.message = message or self.default_message
        self.status_code = status_code if status_code is not None else self.default_status
        self.original_error = original_error
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.status_code:
            return f"[{self.status_code}] {self.message}"
        return self.message

    def to_dict(self) -> dict:
        """Error as a JSON-friendly dict (returned by MCP tools)."""
        return {
            'error': self.__class__.__name__,
            'status_code': self.status_code,
            'message': self.message,
            'details': str(self.details) if self.details else None
        }


class WorkItemNotFoundError(AzureDevOpsError):
    """
    HTTP 404 on a work item.

    For a parent this ends the run for that id; for a freshly created child it
    means the link to the parent could not be added.
    """

    default_status = 404
    default_message = "Work item not found. Please verify the ID exists and you have access."

    def __init__(self, work_item_id: Optional[int] = None, original_error: Optional[Exception] = None):
        super().__init__(
            message=(
                f"Work item {work_item_id} not found. Please verify it exists and you have access."
                if work_item_id else None
            ),
            original_error=original_error,
            details={'work_item_id': work_item_id} if work_item_id else None
        )


class TemplateNotFoundError(AzureDevOpsError):
    """HTTP 404 on a template; it can be deleted between the list and detail calls."""

    default_status = 404
    default_message = "Template not found for this team."

    def __init__(self, template_id: Optional[str] = None, original_error: Optional[Exception] = None):
        super().__init__(
            message=(
                f"Template {template_id} not found for this team. It may have been deleted."
                if template_id else None
            ),
            original_error=original_error,
            details={'template_id': template_id} if template_id else None
        )


class AuthenticationError(AzureDevOpsError):
    """HTTP 401: expired, invalid or under-scoped credentials."""

    default_status = 401
    default_message = "Authentication failed. Your token may have expired. Please refresh credentials."

    def __init__(self, message: Optional[str] = None, original_error: Optional[Exception] = None):
        super().__init__(message=message, original_error=original_error)


class PermissionDeniedError(AzureDevOpsError):
    """
    HTTP 403.

    Creating children needs 'vso.work_write'; reading team templates needs
    team membership or project read access.
    """

    default_status = 403
    default_message = "Permission denied. Please check your credentials and project permissions."

    def __init__(
        self,
        operation: Optional[str] = None,
        required_scope: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        message = None
        if operation and required_scope:
            message = (
                f"Permission denied for {operation}. "
                f"Your credentials need '{required_scope}' scope for this operation."
            )
        elif operation:
            message = f"Permission denied for {operation}. Please check your project permissions."

        super().__init__(
            message=message,
            original_error=original_error,
            details={'operation': operation, 'required_scope': required_scope}
        )


class RateLimitError(AzureDevOpsError):
    """HTTP 429. Carries the Retry-After hint; the run does not retry on its own."""

    default_status = 429
    default_message = "Rate limit exceeded. Please retry after a brief delay."

    def __init__(self, retry_after: Optional[int] = None, original_error: Optional[Exception] = None):
        super().__init__(
            message=f"Rate limit exceeded. Please retry after {retry_after} seconds." if retry_after else None,
            original_error=original_error,
            details={'retry_after': retry_after}
        )
        self.retry_after = retry_after


class TransientError(AzureDevOpsError):
    """HTTP 500, 502, 503 or 504."""

    def __init__(self, status_code: int, original_error: Optional[Exception] = None):
        super().__init__(
            message=(
                f"Azure DevOps service temporarily unavailable (HTTP {status_code}). "
                "Please run the action again shortly."
            ),
            status_code=status_code,
            original_error=original_error
        )


class BadRequestError(AzureDevOpsError):
    """
    HTTP 400, or an invalid argument caught before the call.

    For child creation this usually means a template sets a field value the
    target work item type rejects (unknown area path, invalid state).
    """

    default_status = 400
    default_message = "Bad request. Please check the template field values."

    def __init__(
        self,
        message: Optional[str] = None,
        original_error: Optional[Exception] = None,
        details: Optional[Any] = None
    ):
        super().__init__(message=message, original_error=original_error, details=details)


class ConflictError(AzureDevOpsError):
    """HTTP 409: the parent's relations changed between read and link update."""

    default_status = 409
    default_message = "Conflict detected. The work item has been modified by another user."

    def __init__(self, message: Optional[str] = None, original_error: Optional[Exception] = None):
        super().__init__(message=message, original_error=original_error)


class TimeoutError(AzureDevOpsError):
    """A request did not complete within its bounded wait (reported as 408)."""

    default_status = 408

    def __init__(self, timeout_seconds: float = 8, original_error: Optional[Exception] = None):
        super().__init__(
            message=(
                f"Request timeout after {timeout_seconds} seconds. "
                "Azure DevOps may be experiencing issues."
            ),
            original_error=original_error,
            details={'timeout_seconds': timeout_seconds}
        )


class ChildCreationError(AzureDevOpsError):
    """
    Creating or linking one child work item failed.

    The orchestrator catches this per template and continues with the rest.
    The status code is taken from the underlying error when it has one.

    Attributes:
        template_name: Name of the template the child was built from
        template_id: Id of that template
        stage: 'create' or 'link'
    """

    def __init__(
        self,
        template_name: str,
        template_id: Optional[str] = None,
        stage: str = "create",
        original_error: Optional[Exception] = None
    ):
        reason = str(original_error) if original_error else "unknown error"
        id_part = f" (id: {template_id})" if template_id else ""

        super().__init__(
            message=f'Failed to {stage} child from template "{template_name}"{id_part}: {reason}',
            status_code=getattr(original_error, 'status_code', None),
            original_error=original_error,
            details={'template_name': template_name, 'template_id': template_id, 'stage': stage}
        )
        self.template_name = template_name
        self.template_id = template_id
        self.stage = stage


# Status code -> error class for codes whose constructor needs nothing but the cause
_SIMPLE_ERRORS = {
    400: BadRequestError,
    401: AuthenticationError,
    403: PermissionDeniedError,
    404: WorkItemNotFoundError,
    408: TimeoutError,
    409: ConflictError,
    429: RateLimitError,
}

TRANSIENT_STATUS_CODES = (500, 502, 503, 504)


def map_status_code_to_error(
    status_code: int,
    original_error: Optional[Exception] = None,
    **kwargs
) -> AzureDevOpsError:
    """
    Map HTTP status code to appropriate error class.

    Args:
        status_code: HTTP status code from Azure DevOps API
        original_error: The original exception
        **kwargs: Constructor arguments of the chosen class (e.g. retry_after)

    Returns:
        Appropriate AzureDevOpsError subclass instance
    """
    if status_code in TRANSIENT_STATUS_CODES:
        return TransientError(status_code=status_code, original_error=original_error)

    error_class = _SIMPLE_ERRORS.get(status_code)
    if error_class is None:
        return AzureDevOpsError(
            message=f"Azure DevOps API error: HTTP {status_code}",
            status_code=status_code,
            original_error=original_error
        )
    return error_class(original_error=original_error, **kwargs)
