# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

from typing import Optional


class PipelineError(Exception):
    """
    Base class for every error the analysis pipeline surfaces to callers.
    `code` is the machine-readable identifier placed in failure responses.
    """

    code = "pipeline_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(PipelineError):
    """Bad input: question length/format, image too large or unrecognized. Never retried."""

    code = "validation_error"


class AccessDeniedError(PipelineError):
    """Tier, quota or budget denial. Surfaced with an upgrade suggestion."""

    code = "access_denied"

    def __init__(self, message: str, reason: str, suggested_tier: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.suggested_tier = suggested_tier


class ProviderError(PipelineError):
    """A specific analysis service failed or timed out."""

    code = "provider_error"

    def __init__(self, message: str, service: Optional[str] = None) -> None:
        super().__init__(message)
        self.service = service


class DuplicateInFlightError(PipelineError):
    """The same user + question + image combination is already being processed."""

    code = "duplicate_in_flight"


class InternalError(PipelineError):
    """Unexpected exception caught at the orchestrator boundary."""

    code = "internal_error"
