"""
Shared schema base.

The HTTP contract speaks camelCase ("fullName", "accountNumber") while the
Python side stays snake_case. CamelModel generates the aliases, accepts
either spelling on input, and FastAPI serializes responses by alias.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class MessageResponse(CamelModel):
    message: str
