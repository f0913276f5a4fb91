"""
Provider contracts used by the assessment core, plus the Gemini-backed adapter.

The core never talks to HTTP directly: the session, generator, scorer,
report synthesizer and audio pipeline receive objects satisfying these
protocols. Production wiring passes a `GeminiProvider`; tests pass fakes.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol

from .gemini_client import GeminiClient
from .parsing import extract_json_object
from .schemas import AssessmentRecord, GradingResult, ProfileUpsert, ProficiencyLevel
from .settings import settings


class ContentProvider(Protocol):
	async def generate_content(self, instructions: str, response_schema: Dict[str, Any]) -> str:
		"""Return schema-conformant JSON text for the instructions."""
		...


class GradingProvider(Protocol):
	async def grade_submission(
		self,
		original_prompt: str,
		submission: str,
		target_level: ProficiencyLevel,
		*,
		media_type: Optional[str] = None,
	) -> GradingResult:
		"""Grade free-form work; `media_type` set means `submission` is base64 audio."""
		...


class AudioProvider(Protocol):
	async def synthesize_speech(self, transcript: str, speech_config: Dict[str, Any]) -> Optional[str]:
		"""Return base64 PCM16 audio for the transcript, or None when no audio came back."""
		...


class AssessmentStore(Protocol):
	async def save_assessment(self, record: AssessmentRecord) -> None:
		...

	async def upsert_profile(self, profile: ProfileUpsert) -> None:
		...


GRADING_SCHEMA: Dict[str, Any] = {
	"type": "OBJECT",
	"properties": {
		"score": {"type": "NUMBER", "description": "Overall score 0-100."},
		"feedback": {"type": "STRING"},
		"estimatedLevel": {"type": "STRING", "description": "Estimated CEFR level, e.g. B1."},
	},
	"required": ["score", "feedback", "estimatedLevel"],
}


def _build_writing_grading_prompt(original_prompt: str, text: str, level: ProficiencyLevel) -> str:
	return (
		f"You are an English writing examiner. A student at CEFR level {level.value} was given the writing prompt:\n"
		f"\"{original_prompt}\"\n\n"
		f"Student response:\n\"{text}\"\n\n"
		f"Assess grammar, vocabulary, task achievement, coherence and cohesion against CEFR {level.value}.\n"
		"Give a score from 0 to 100, one short paragraph of constructive feedback, and your estimate of the student's CEFR level.\n"
		"Return ONLY JSON with keys: score, feedback, estimatedLevel."
	)


def _build_speaking_grading_prompt(original_prompt: str, level: ProficiencyLevel) -> str:
	return (
		f"You are an expert ESL speaking examiner. A student at CEFR level {level.value} was given the speaking prompt:\n"
		f"\"{original_prompt}\"\n\n"
		"Their audio response is attached. Assess fluency, pronunciation, intonation, grammar, vocabulary and task fulfilment "
		f"against CEFR {level.value}.\n"
		"Give a score from 0 to 100, one short paragraph of constructive feedback, and your estimate of the student's CEFR level.\n"
		"Return ONLY JSON with keys: score, feedback, estimatedLevel."
	)


def parse_grading_payload(raw: str) -> GradingResult:
	data = extract_json_object(raw)
	if not isinstance(data, dict):
		raise ValueError("grading payload is not a JSON object")
	score = data.get("score")
	if isinstance(score, bool) or not isinstance(score, (int, float)):
		raise ValueError(f"grading payload has no numeric score: {score!r}")
	feedback = data.get("feedback")
	if not isinstance(feedback, str):
		raise ValueError("grading payload has no feedback text")
	estimated = data.get("estimatedLevel") or data.get("estimated_level") or ""
	return GradingResult(score=float(score), feedback=feedback, estimated_level=str(estimated).strip())


class GeminiProvider:
	"""Content, grading and audio provider backed by the Gemini REST API."""

	def __init__(self, *, model: Optional[str] = None, tts_model: Optional[str] = None) -> None:
		self.model = model or settings.gemini_model
		self.tts_model = tts_model or settings.gemini_model_tts

	async def generate_content(self, instructions: str, response_schema: Dict[str, Any]) -> str:
		client = GeminiClient(model=self.model)
		try:
			return await client.generate(instructions, response_schema=response_schema)
		finally:
			await client.aclose()

	async def grade_submission(
		self,
		original_prompt: str,
		submission: str,
		target_level: ProficiencyLevel,
		*,
		media_type: Optional[str] = None,
	) -> GradingResult:
		client = GeminiClient(model=self.model)
		try:
			if media_type:
				parts = [
					{"text": _build_speaking_grading_prompt(original_prompt, target_level)},
					{"inline_data": {"mime_type": media_type, "data": submission}},
				]
				raw = await client.generate_multimodal(parts, response_schema=GRADING_SCHEMA)
			else:
				# Optional safety clamp to avoid extremely long prompts
				text = submission if len(submission) <= 8000 else submission[:8000]
				raw = await client.generate(
					_build_writing_grading_prompt(original_prompt, text, target_level),
					response_schema=GRADING_SCHEMA,
				)
		finally:
			await client.aclose()
		return parse_grading_payload(raw)

	async def synthesize_speech(self, transcript: str, speech_config: Dict[str, Any]) -> Optional[str]:
		client = GeminiClient(model=self.model)
		try:
			return await client.generate_speech(transcript, to_gemini_speech_config(speech_config), model=self.tts_model)
		finally:
			await client.aclose()


def to_gemini_speech_config(speech_config: Dict[str, Any]) -> Dict[str, Any]:
	"""Translate the provider-neutral speech config into Gemini's `speechConfig` shape."""
	multi = speech_config.get("multiSpeakerVoiceConfigs")
	if multi:
		return {
			"multiSpeakerVoiceConfig": {
				"speakerVoiceConfigs": [
					{
						"speaker": item["speakerName"],
						"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": item["voiceName"].lower()}},
					}
					for item in multi
				]
			}
		}
	return {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": str(speech_config["voiceName"]).lower()}}}
