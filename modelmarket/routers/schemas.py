"""Request bodies shared by the user-facing routers (camelCase on the wire)."""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from modelmarket.services.subscription_service import normalize_duration


def _duration(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    key = normalize_duration(value)
    if key is None:
        raise ValueError("duration must be one of hour, day, week, month, year")
    return key


class CheckoutRequest(BaseModel):
    model_id: str = Field(..., alias="modelId", min_length=1)
    plan_id: str = Field(..., alias="planId", min_length=1)
    duration: Optional[str] = None

    model_config = {"populate_by_name": True, "protected_namespaces": ()}

    @field_validator("duration")
    @classmethod
    def _check_duration(cls, value: Optional[str]) -> Optional[str]:
        return _duration(value)


class RenewRequest(BaseModel):
    duration: str = "month"

    @field_validator("duration")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        return _duration(value)


class TrackUsageRequest(BaseModel):
    model_id: str = Field(..., alias="modelId", min_length=1)
    operation: Literal["inference", "download", "view"]
    tokens_used: int = Field(0, alias="tokensUsed", ge=0)
    response_time: int = Field(0, alias="responseTime", ge=0, description="Response time in ms")
    success: bool = True
    error_type: Optional[str] = Field(None, alias="errorType", max_length=255)
    metadata: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True, "protected_namespaces": ()}


class AccessCheckRequest(BaseModel):
    model_id: str = Field(..., alias="modelId", min_length=1)
    operation: Literal["inference", "download", "view"] = "inference"

    model_config = {"populate_by_name": True, "protected_namespaces": ()}
