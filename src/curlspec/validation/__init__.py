"""Validation subsystem for curlspec."""

from curlspec.validation.validator import SpecValidator, is_valid_url

__all__ = [
    "SpecValidator",
    "is_valid_url",
]
