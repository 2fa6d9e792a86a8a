"""Schema baselines shared by request and response DTOs."""

from pydantic import BaseModel, ConfigDict


class StrictRequestModel(BaseModel):
    """Request DTO base that always forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class ResponseModel(BaseModel):
    """Response DTO base; builds from ORM rows and dataclasses by attribute."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True, populate_by_name=True)
