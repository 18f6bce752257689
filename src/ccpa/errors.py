"""Application-level exception types for ccpa."""

from __future__ import annotations


class CcpaError(Exception):
    """Base exception for ccpa."""


class ConfigurationError(CcpaError):
    """Base exception for configuration and startup validation errors."""


class AgentNotFoundError(ConfigurationError):
    """Raised when the agent CLI cannot be executed."""


class TranscriptionError(CcpaError):
    """Raised when a voice message cannot be converted or transcribed."""
