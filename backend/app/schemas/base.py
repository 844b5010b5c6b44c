"""
Base schemas shared by request and response DTOs.
"""

from pydantic import BaseModel, ConfigDict


class StrictRequestModel(BaseModel):
    """Request DTO base that always forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class ORMResponseModel(BaseModel):
    """Response DTO populated from SQLAlchemy rows; enums serialize by value."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
