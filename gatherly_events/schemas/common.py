"""
Common schemas for API responses and error handling.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Schema for detailed error information."""

    error_code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    suggestions: Optional[List[str]] = Field(None, description="Helpful suggestions for resolving the error")
    retry_after: Optional[int] = Field(None, description="Seconds to wait before retrying")


class ErrorResponse(BaseModel):
    """Schema for API error responses."""

    error: ErrorDetail
    error_id: str
    timestamp: str

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": {
                        "error_code": "ALREADY_REGISTERED",
                        "message": "User 7d9f... is already registered for event 123e...",
                        "details": {
                            "event_id": "123e4567-e89b-12d3-a456-426614174000",
                            "current_status": "waitlisted"
                        }
                    },
                    "error_id": "5b1c7f0e-2f43-4f7c-9e55-0c8f6f3f1a22",
                    "timestamp": "2024-01-01T12:00:00+00:00"
                },
                {
                    "error": {
                        "error_code": "CONCURRENCY_CONFLICT",
                        "message": "Event 123e... was modified by another transaction",
                        "suggestions": ["Please try again", "Wait a moment and retry"],
                        "retry_after": 1
                    },
                    "error_id": "0f7e8a52-8c55-4d8e-a0a3-5d0b5a0e4b7c",
                    "timestamp": "2024-01-01T12:00:00+00:00"
                }
            ]
        }
    )


class HealthStatus(BaseModel):
    """Schema for health check responses."""

    status: str = Field(..., description="Overall health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
