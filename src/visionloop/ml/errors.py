"""Exceptions raised by the classification core.

None of these are fatal: the manager and the pipeline log them and keep going.
"""

from __future__ import annotations


class ClassifierConfigError(Exception):
    """A reconfiguration did not produce a live classifier."""


class ConfigIncompatibilityError(ClassifierConfigError):
    """The requested device cannot run the requested model."""


class ClassifierCreationError(ClassifierConfigError):
    """The classifier could not be constructed (missing model, bad session, ...)."""


class InferenceError(Exception):
    """A single image could not be classified."""


class FingerprintError(InferenceError):
    """The processed image could not be re-encoded for fingerprinting."""
