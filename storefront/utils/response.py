from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse


def _envelope(ok: bool, message: str, data: Any = None, errors: Any = None, **extra) -> dict:
    body = {
        "success": ok,
        "message": message,
        "data": data,
        "errors": errors,
    }
    body.update(extra)
    # Decimals, datetimes and enums become JSON-safe here
    return jsonable_encoder(body)


def success(
    data: Optional[Any] = None,
    message: str = "Success",
    meta: Optional[Dict] = None,
):
    if meta is None:
        return _envelope(True, message, data)
    return _envelope(True, message, data, meta=meta)


def error_response(
    status_code: int,
    message: str,
    errors: Optional[Any] = None,
    code: Optional[str] = None,
) -> JSONResponse:
    """Failure envelope: ``data`` is always null and ``code`` is machine readable."""
    return JSONResponse(
        status_code=status_code,
        content=_envelope(
            False,
            message,
            errors=errors or [],
            code=code,
            timestamp=f"{datetime.utcnow().isoformat()}Z",
        ),
    )


def paginated_response(items, total: int, page: int, limit: int):
    return success(
        data=items,
        meta={
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        },
    )


def redirect_response(path: str, **params) -> RedirectResponse:
    """
    303 redirect for browser form posts.

    Keyword arguments become the query string; ``None`` values are dropped.
    """
    query = urlencode({key: value for key, value in params.items() if value is not None})
    url = f"{path}?{query}" if query else path
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)
