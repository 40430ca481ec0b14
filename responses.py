from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def send_success(data: Any = None, message: str = "Success", status_code: int = 200) -> JSONResponse:
    body = {
        "success": True,
        "message": message,
        "data": data,
        "timestamp": _now(),
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def send_error(
    message: str = "Internal Server Error",
    status_code: int = 500,
    error: Optional[str] = None,
    path: Optional[str] = None,
    errors: Optional[List[Dict[str, str]]] = None,
) -> JSONResponse:
    body: Dict[str, Any] = {
        "success": False,
        "message": message,
        "error": error or message,
        "timestamp": _now(),
        "path": path,
    }
    if errors:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = (total + limit - 1) // limit if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNextPage": page < total_pages,
        "hasPrevPage": page > 1,
    }
