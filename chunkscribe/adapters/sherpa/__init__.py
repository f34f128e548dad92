"""Sherpa-ONNX adapter for local offline transcription."""

from .transcription import SherpaTranscriptionAdapter

__all__ = ["SherpaTranscriptionAdapter"]
