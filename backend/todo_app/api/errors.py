"""Translation of service errors into HTTP responses."""
from collections.abc import Generator
from contextlib import contextmanager
import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from todo_app.services.errors import Conflict, InvalidRequest, NotFound, Unauthorized

logger = logging.getLogger(__name__)


def unauthorized(detail: str = "Invalid authentication credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


@contextmanager
def service_errors() -> Generator[None, None, None]:
    """Re-raise service errors as the matching HTTPException."""
    try:
        yield
    except Unauthorized as exc:
        raise unauthorized(exc.message) from exc
    except NotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    except Conflict as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc
    except InvalidRequest as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except SQLAlchemyError as exc:
        logger.exception("Database error")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc
