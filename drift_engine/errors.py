"""
Drift Engine - Error taxonomy

Every failure the engine surfaces to a caller is one of these types.  The
HTTP layer maps them onto status codes in ``drift_engine.main``; services
raise them directly.

* ``ValidationError``  - malformed input, never retried automatically.
* ``NotFoundError``    - a referenced entity does not exist (or is not
  visible to the acting user).
* ``ConflictError``    - duplicate creation; services resolve it to the
  existing entity, so it should never reach a client.
* ``StateError``       - the request is valid but the entity's state forbids
  it (e.g. messaging a conversation you left).
* ``TransientError``   - store or network unavailable; safe to retry since
  all mutations are idempotent.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for engine failures."""

    status_code: int = 500
    code: str = "engine_error"
    retryable: bool = False

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }


class ValidationError(EngineError):
    status_code = 400
    code = "validation_error"


class NotFoundError(ValidationError):
    status_code = 404
    code = "not_found"


class ConflictError(EngineError):
    status_code = 409
    code = "conflict"

    def __init__(self, message: str, *, existing: object | None = None, code: str | None = None) -> None:
        super().__init__(message, code=code)
        self.existing = existing


class StateError(EngineError):
    status_code = 409
    code = "invalid_state"


class TransientError(EngineError):
    status_code = 503
    code = "transient"
    retryable = True
