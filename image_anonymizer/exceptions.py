"""
Custom exceptions for the anonymization pipeline.

Each stage raises one of these so callers can tell a collaborator outage
(detection or classification) apart from a geometry bug (region or render).
"""

from typing import Optional, Dict, Any


class AnonymizerError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        return self.message


class DetectionFailed(AnonymizerError):
    """Raised when the vision collaborator is unreachable or errored."""


class ClassificationFailed(AnonymizerError):
    """Raised when the text classifier errored or returned a malformed batch."""


class InvalidRegion(AnonymizerError):
    """Raised when region geometry is empty or lies outside the image."""


class RenderFailed(AnonymizerError):
    """
    Raised when a mask would be rendered outside the image buffer.

    This is never expected in practice; it means region computation produced
    a rectangle the merger should not have emitted.
    """
