from __future__ import annotations

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """JSON bodies are camelCase on the wire; snake_case names are accepted too."""

    class Config:
        from_attributes = True
        populate_by_name = True
        alias_generator = to_camel
