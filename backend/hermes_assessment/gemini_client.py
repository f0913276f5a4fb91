from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings

logger = logging.getLogger(__name__)


class GeminiClient:
	def __init__(self, api_key: Optional[str] = None, *, model: Optional[str] = None, timeout: Optional[float] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		self._auth_in_query = self.provider != "vertex"
		self._client = httpx.AsyncClient(timeout=timeout or settings.request_timeout_seconds)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=timeout or settings.request_timeout_seconds)

	def endpoint(self, model: Optional[str] = None) -> str:
		model = model or self.model
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			return (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{model}:generateContent"
			)
		# Google AI Studio (Generative Language API)
		return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

	async def generate(
		self,
		prompt: str,
		*,
		response_schema: Optional[Dict[str, Any]] = None,
	) -> str:
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
		if response_schema is not None:
			payload["generationConfig"] = {"responseMimeType": "application/json", "responseSchema": response_schema}
		data = await self._post_payload(
			payload,
			fallback_prompt=prompt,
		)
		if isinstance(data, str):
			return data
		return _first_text_part(data)

	async def generate_multimodal(
		self,
		parts: List[Dict[str, Any]],
		*,
		response_schema: Optional[Dict[str, Any]] = None,
	) -> str:
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
		if response_schema is not None:
			payload["generationConfig"] = {"responseMimeType": "application/json", "responseSchema": response_schema}
		data = await self._post_payload(
			payload,
			fallback_prompt=None,
			allow_fallback=False,
		)
		return _first_text_part(data)

	async def generate_speech(self, transcript: str, speech_config: Dict[str, Any], *, model: Optional[str] = None) -> Optional[str]:
		"""Run a TTS request and return the base64 audio payload, or None if the reply carries no audio."""
		payload: Dict[str, Any] = {
			"contents": [{"role": "user", "parts": [{"text": transcript}]}],
			"generationConfig": {"responseModalities": ["AUDIO"], "speechConfig": speech_config},
		}
		tts_model = model or settings.gemini_model_tts
		logger.info("TTS request model=%s chars=%d", tts_model, len(transcript))
		data = await self._post_payload(
			payload,
			fallback_prompt=None,
			allow_fallback=False,
			url=self.endpoint(tts_model),
		)
		try:
			parts = data["candidates"][0]["content"]["parts"]
		except (KeyError, IndexError, TypeError):
			return None
		for part in parts:
			inline = part.get("inlineData") or part.get("inline_data") or {}
			mime = inline.get("mimeType") or inline.get("mime_type") or ""
			if inline.get("data") and mime.startswith("audio/"):
				return inline["data"]
		return None

	async def _post_payload(
		self,
		payload: Dict[str, Any],
		*,
		fallback_prompt: Optional[str],
		allow_fallback: bool = True,
		url: Optional[str] = None,
	) -> Any:
		url = url or self.endpoint()
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		last_error: Optional[Exception] = None
		r: Optional[httpx.Response] = None
		try:
			r = await self._client.post(url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPError as err:
			last_error = err
		if last_error is None and r is not None:
			try:
				return r.json()
			except ValueError:
				last_error = RuntimeError(f"Unexpected Gemini response: {r.text[:500]}")
		if not allow_fallback or not self._fallback_enabled:
			raise last_error or RuntimeError("Gemini call failed and no fallback configured")
		if fallback_prompt is None:
			raise last_error or RuntimeError("Gemini call failed and fallback prompt unavailable")
		logger.warning("Gemini call failed (%s); retrying via OpenRouter", last_error)
		return await self._fallback_generate(fallback_prompt, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, prompt: str, primary_error: Optional[Exception]) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error or RuntimeError("Fallback requested but OpenRouter is not configured")
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		try:
			r = await self._fallback_client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except Exception as fallback_err:
			if primary_error is not None:
				raise RuntimeError(
					f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
				) from fallback_err
			raise fallback_err


def _first_text_part(data: Dict[str, Any]) -> str:
	try:
		return data["candidates"][0]["content"]["parts"][0]["text"]
	except (KeyError, IndexError, TypeError):
		raise RuntimeError(f"Unexpected Gemini response shape: {str(data)[:500]}")
