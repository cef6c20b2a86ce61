from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
	"""Error raised by the JSON API routers, rendered as a ``success: false`` envelope."""

	def __init__(self, status_code: int, message: str) -> None:
		super().__init__(message)
		self.status_code = status_code
		self.message = message


def now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


def envelope(data: Any, **extra: Any) -> Dict[str, Any]:
	return {"success": True, "data": data, **extra, "timestamp": now_iso()}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
	return JSONResponse(
		status_code=exc.status_code,
		content={"success": False, "error": exc.message, "timestamp": now_iso()},
	)
