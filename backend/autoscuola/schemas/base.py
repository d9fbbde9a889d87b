"""
Base schemas with standardized field types for consistent API responses.
"""
from pydantic import BaseModel, ConfigDict


class StandardizedModel(BaseModel):
    """Base model for responses built from ORM rows or plain dicts"""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):
    """Request bodies: forbid unknown fields and validate defaults."""

    model_config = ConfigDict(extra="forbid", validate_default=True, use_enum_values=True)
