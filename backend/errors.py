"""
backend/errors.py

Error taxonomy for the access-control core.

Every public operation either returns a definite result or raises exactly one
of these. The core never imports FastAPI; main.py maps status_code onto the
HTTP response.

    Forbidden -> 403   principal lacks permission (also used for "no role")
    NotFound  -> 404   project / task / member / invitation absent
    Conflict  -> 409   duplicate invite, last-owner violation, already member
    Expired   -> 410   invitation past its expiry
    Invalid   -> 400   malformed input (e.g. inviting as owner)
"""

from __future__ import annotations


class AccessError(Exception):
    """Base class. `detail` is safe to show to the caller."""

    status_code = 500
    kind = "error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class Forbidden(AccessError):
    status_code = 403
    kind = "forbidden"


class NotFound(AccessError):
    status_code = 404
    kind = "not_found"


class Conflict(AccessError):
    status_code = 409
    kind = "conflict"


class Expired(AccessError):
    status_code = 410
    kind = "expired"


class Invalid(AccessError):
    status_code = 400
    kind = "invalid"


# Same text for "no role" and "role too low" so responses can't be used to
# probe which projects a principal belongs to.
ACCESS_DENIED = "You do not have permission to perform this action"
