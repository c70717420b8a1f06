from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error response body"""
    success: bool = Field(False, description="Always false")
    error_code: str = Field(description="Error code")
    message: str = Field(description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Structured failure context")

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "error_code": "INSUFFICIENT_BALANCE",
                "message": "Insufficient wallet balance. Required: 13.00, Available: 10.00",
                "details": {"required": "13.00", "available": "10.00"}
            }
        }
    }


class HealthResponse(BaseModel):
    status: str = Field(description="healthy / unhealthy")
    version: str = Field(description="API version")
    database: str = Field(description="Database state")
