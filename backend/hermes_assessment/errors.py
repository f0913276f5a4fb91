from __future__ import annotations


class AssessmentError(Exception):
	"""Base class for every failure the assessment core reports.

	`description` is the human-readable text shown next to the restart action.
	"""

	def __init__(self, description: str) -> None:
		super().__init__(description)
		self.description = description


class MalformedResponseError(AssessmentError):
	"""Provider payload failed JSON parsing or schema validation."""


class GenerationError(AssessmentError):
	"""Content provider unreachable or rejected the generation request."""


class ScoringError(AssessmentError):
	"""Grading provider failed while scoring a free-form answer."""


class AudioSynthesisError(AssessmentError):
	"""No audio payload came back, or it could not be decoded."""


class ReportSynthesisError(AssessmentError):
	"""Provider failure or unparseable payload while building the final report."""


class PersistenceError(AssessmentError):
	"""The store rejected a write."""


class AuthError(AssessmentError):
	"""No usable identity where one is required."""


class SessionStateError(AssessmentError):
	"""Operation is not allowed in the session's current state."""


class CaptureInUseError(AssessmentError):
	"""A capture stream is already active for this session."""


# Errors that move the session to `failed`
FATAL_ERRORS = (MalformedResponseError, GenerationError, ScoringError, ReportSynthesisError, AuthError)
