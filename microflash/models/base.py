"""
Strict Base Models for Request/Response Validation

Request bodies reject unknown fields so client/server mismatches surface
as 422 errors instead of silently ignored input.

Usage:
    class DeckCreate(StrictRequest):
        title: str

    class CardResponse(StrictResponse):
        id: int
        front: str

Architecture:
    API Request → StrictRequest (extra="forbid") → Service
    DB Model → StrictResponse (extra="ignore") → API Response
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class StrictRequest(BaseModel):
    """
    Base model for request bodies with strict validation.

    Features:
        - extra="forbid": Unknown fields raise 422 Unprocessable Entity
        - validate_default=True: Validates default values
        - str_strip_whitespace=True: Trims whitespace from strings
        - from_attributes=True: Allows ORM model conversion
    """

    model_config = ConfigDict(
        extra="forbid",  # Reject unknown fields
        validate_default=True,  # Validate defaults
        str_strip_whitespace=True,  # Clean string inputs
        from_attributes=True,  # Enable ORM conversion
    )


class StrictResponse(BaseModel):
    """
    Base model for response bodies.

    Allows extra attributes so ORM rows with more columns validate cleanly.
    """

    model_config = ConfigDict(
        extra="ignore",  # Allow extra fields in responses
        validate_default=True,  # Validate defaults
        from_attributes=True,  # Enable ORM conversion
    )


class ErrorDetail(StrictResponse):
    """
    Standardized error response detail.

    Matches the body written by the error_handling middleware.
    """

    error: str  # Error code (e.g., "SESSION_EXPIRED")
    message: str  # Human-readable message
    error_id: str  # Correlation ID for log lookup
    details: Optional[dict] = None
    timestamp: datetime
