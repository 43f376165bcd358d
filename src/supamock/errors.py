"""
Supamock - Error taxonomy.

Every failure the mock backend reports is a PostgrestError subclass with an
HTTP status and a PostgREST-shaped payload:
- MalformedRequest: unparseable path, body or query parameter
- ValidationError: missing payload, or missing filter on delete/update
- NotFound: unknown RPC/edge function, or update matching zero rows
- ShapeError: single/maybeSingle cardinality violation
- HandlerFailure: exception raised inside a registered handler
- InjectedFailure: raised by test code from the error-injection hook
"""

from typing import Any


class PostgrestError(Exception):
    """
    Base class for failures surfaced as HTTP error responses.

    Attributes:
        message: Human-readable description
        code: PostgREST-style error code (e.g. "PGRST116")
        status: HTTP status of the response
        details: Optional extra context
        hint: Optional remediation hint
    """

    default_status = 500
    default_code = "PGRST000"

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        status: int | None = None,
        details: Any = None,
        hint: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.status = status or self.default_status
        self.details = details
        self.hint = hint

    def to_payload(self) -> dict[str, Any]:
        """Error body in the shape PostgREST returns."""
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "hint": self.hint,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status}, code={self.code!r}, message={self.message!r})"


class MalformedRequest(PostgrestError):
    default_status = 400
    default_code = "PGRST100"


class ValidationError(PostgrestError):
    default_status = 400
    default_code = "PGRST102"


class NotFound(PostgrestError):
    default_status = 404
    default_code = "PGRST116"


class ShapeError(PostgrestError):
    """
    Cardinality violation while resolving a single/maybeSingle response.

    `shape` tells the two cases apart: "single" (anything but one row)
    and "maybeSingle" (more than one row).
    """

    default_status = 406
    default_code = "PGRST116"

    def __init__(self, message: str = "", *, shape: str = "single", rows: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.shape = shape
        self.rows = rows


class HandlerFailure(PostgrestError):
    default_status = 500
    default_code = "P0001"


class InjectedFailure(PostgrestError):
    """
    Failure raised by a test's error trigger.

    A code that is a valid HTTP status doubles as the status, so
    `InjectedFailure("Duplicate key", code="409")` answers with 409.
    Postgres codes such as "23505" keep the default status.
    """

    default_status = 400

    def __init__(self, message: str = "", *, code: str | None = None, status: int | None = None, **kwargs):
        if status is None and code is not None and code.isdigit() and 100 <= int(code) <= 599:
            status = int(code)
        super().__init__(message, code=code or str(status or self.default_status), status=status, **kwargs)
