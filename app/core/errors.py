"""
Typed service errors.

Every failure surfaced by the time entry and report services is one of the
kinds below. Each carries an HTTP status, a machine-readable ``kind`` and
optional structured context that is rendered next to the message:

    ServiceError
    +-- NotFound          entity absent or not owned by the caller
    +-- Conflict          another entry of the user is already in progress
    +-- InvalidState      operation not valid for the entity's current state
    +-- InvalidRequest    malformed or out-of-range input
    +-- Unavailable       storage or collaborator failure
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError


logger = logging.getLogger(__name__)


class ServiceError(Exception):
    status_code: int = 500
    kind: str = "error"

    def __init__(self, detail: str, **context: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict:
        return {"detail": self.detail, "kind": self.kind, **self.context}


class NotFound(ServiceError):
    status_code = 404
    kind = "not_found"


class Conflict(ServiceError):
    status_code = 409
    kind = "conflict"


class InvalidState(ServiceError):
    status_code = 400
    kind = "invalid_state"


class InvalidRequest(ServiceError):
    status_code = 400
    kind = "invalid_request"


class Unavailable(ServiceError):
    status_code = 503
    kind = "unavailable"


def parse_object_id(value: Any, label: str) -> ObjectId:
    """Convert a client supplied identifier, rejecting malformed values."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError) as exc:
        raise InvalidRequest(f"Invalid {label}") from exc


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Re-raise driver failures inside the block as ``Unavailable``."""
    try:
        yield
    except PyMongoError as exc:
        logger.error("%s failed: %s", action, exc)
        raise Unavailable(f"{action} failed: {exc}") from exc
