from __future__ import annotations
import base64
import logging
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings

logger = logging.getLogger(__name__)


class GeminiError(RuntimeError):
	pass


def image_part(data: bytes, mime_type: str) -> Dict[str, Any]:
	"""Wrap raw image bytes as an inline ``generateContent`` part."""
	return {"inline_data": {"mime_type": mime_type, "data": base64.b64encode(data).decode("ascii")}}


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		http_client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = http_client or httpx.AsyncClient(timeout=settings.gemini_timeout_seconds)
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_headers = {
			"Authorization": f"Bearer {settings.openrouter_api_key}" if settings.openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}

	async def generate(self, prompt: str) -> str:
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
		return await self._post_payload(payload, fallback_prompt=prompt)

	async def generate_multimodal(self, prompt: str, parts: List[Dict[str, Any]]) -> str:
		"""Send ``prompt`` followed by extra parts (usually images).

		There is no fallback for multimodal calls: OpenRouter only receives
		plain text, and dropping the images would change the task.
		"""
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}, *parts]}]}
		return await self._post_payload(payload, fallback_prompt=None)

	async def _post_payload(self, payload: Dict[str, Any], *, fallback_prompt: Optional[str]) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		last_error: Optional[Exception] = None
		r: Optional[httpx.Response] = None
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPError as err:
			last_error = err
		if last_error is None and r is not None:
			try:
				data = r.json()
				return "".join(p.get("text", "") for p in data["candidates"][0]["content"]["parts"])
			except (ValueError, KeyError, IndexError, TypeError):
				last_error = GeminiError(f"Unexpected Gemini response: {r.text[:500]}")
		logger.warning("Gemini call to %s failed: %s", self.model, last_error)
		if not self._fallback_enabled or fallback_prompt is None:
			raise GeminiError(f"Gemini call failed: {last_error}") from last_error
		return await self._fallback_generate(fallback_prompt, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()

	async def _fallback_generate(self, prompt: str, primary_error: Optional[Exception]) -> str:
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": settings.openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		logger.info("Falling back to OpenRouter model %s", settings.openrouter_model)
		try:
			r = await self._client.post(settings.openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as fallback_err:
			raise GeminiError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err
