"""Shared schema base."""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base for every request/response schema; reads straight from ORM objects."""

    model_config = ConfigDict(from_attributes=True)
