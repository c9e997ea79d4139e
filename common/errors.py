"""Domain exceptions and their HTTP mapping."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class InventoryError(Exception):
    """Base class for errors raised by the inventory core."""


class LookupNotFound(InventoryError):
    """A location, category or type id did not resolve to a row."""

    def __init__(self, kind: str, ref_id: object) -> None:
        super().__init__(f"{kind} {ref_id!r} not found")
        self.kind = kind
        self.ref_id = ref_id


class LookupFailed(InventoryError):
    """The lookup itself errored (database unavailable, bad query, ...)."""


class PersistenceError(InventoryError):
    """An equipment or log write could not be stored."""


def persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    logger.error("Persistence failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Server error"})


def register_error_handlers(app: FastAPI) -> None:
    """Attach the inventory exception handlers to an app."""

    app.add_exception_handler(PersistenceError, persistence_error_handler)  # type: ignore[arg-type]
