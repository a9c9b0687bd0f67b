"""Base schemas and common types for the ImFine API."""

from pydantic import BaseModel, ConfigDict


class SafetyBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorDetail(SafetyBaseModel):
    """Detailed error information."""

    field: str | None = None
    message: str
    code: str


class ErrorResponse(SafetyBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[ErrorDetail] = []
