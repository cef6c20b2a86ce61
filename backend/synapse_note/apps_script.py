from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from .settings import settings

logger = logging.getLogger(__name__)

_HTML_MARKERS = ("<html", "<!doctype", "moved temporarily", "moved permanently")


class AppsScriptError(RuntimeError):
	pass


class AppsScriptClient:
	"""Client for the Google Apps Script web app that mirrors site statistics."""

	def __init__(self, script_url: Optional[str] = None, *, http_client: Optional[httpx.AsyncClient] = None) -> None:
		self.script_url = script_url or settings.google_apps_script_url
		if not self.script_url:
			raise ValueError("GOOGLE_APPS_SCRIPT_URL is not configured")
		self._client = http_client or httpx.AsyncClient(
			timeout=settings.google_apps_script_timeout_seconds,
			headers={"User-Agent": "SynapseNote/1.0"},
		)

	async def aclose(self) -> None:
		await self._client.aclose()

	async def _request(self, method: str, *, params: Optional[Dict[str, Any]] = None, json: Any = None) -> Any:
		try:
			r = await self._client.request(method, self.script_url, params=params, json=json)
		except httpx.RequestError as err:
			raise AppsScriptError(f"Google Apps Script request failed: {err}") from err
		body = r.text.strip()
		lowered = body.lower()
		# A redirect or login page comes back as HTML instead of JSON
		if r.status_code >= 300 or any(marker in lowered for marker in _HTML_MARKERS):
			raise AppsScriptError(f"Google Apps Script returned invalid response: {r.status_code} {body[:100]}")
		if not body:
			return {}
		try:
			return r.json()
		except ValueError as err:
			raise AppsScriptError(f"Google Apps Script returned invalid JSON: {err}") from err

	def _wrap(self, data: Any) -> Dict[str, Any]:
		return {
			"success": True,
			"data": data,
			"source": "google-apps-script",
			"timestamp": datetime.now(timezone.utc).isoformat(),
		}

	async def get_system_stats(self) -> Dict[str, Any]:
		return self._wrap(await self._request("GET", params={"action": "getStats"}))

	async def get_user_count(self) -> Dict[str, Any]:
		return self._wrap(await self._request("GET", params={"action": "getUserCount"}))

	async def get_quiz_count(self) -> Dict[str, Any]:
		return self._wrap(await self._request("GET", params={"action": "getQuizCount"}))

	async def perform_action(self, action: str, data: Any = None) -> Dict[str, Any]:
		return self._wrap(await self._request("POST", json={"action": action, "data": data or {}}))

	async def submit_user_data(self, user_data: Dict[str, Any]) -> Dict[str, Any]:
		return await self.perform_action("submitUserData", user_data)

	async def submit_quiz_data(self, quiz_data: Dict[str, Any]) -> Dict[str, Any]:
		return await self.perform_action("submitQuizData", quiz_data)

	async def test_connection(self) -> bool:
		try:
			await self._request("GET", params={"action": "ping"})
			return True
		except AppsScriptError as err:
			logger.warning("Google Apps Script connection test failed: %s", err)
			return False
