from __future__ import annotations


class DomainError(Exception):
  """Base class for failures raised by the workflow core.

  Routers never catch these; the handler registered in `planboard.main`
  turns them into `{"detail": ..., "code": ...}` responses.
  """

  status_code = 400
  code = "error"

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class Unauthorized(DomainError):
  status_code = 403
  code = "unauthorized"


class NotFound(DomainError):
  status_code = 404
  code = "not_found"


class Conflict(DomainError):
  status_code = 409
  code = "conflict"


class Validation(DomainError):
  status_code = 422
  code = "validation"


class Unavailable(DomainError):
  status_code = 503
  code = "unavailable"
