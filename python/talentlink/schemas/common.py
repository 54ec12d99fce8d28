"""Shared base for API schemas.

Wire format is camelCase (roomId, senderUid, ...). Python code uses the
snake_case field names; `populate_by_name` lets services build models with
either spelling.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        """Dump to a JSON-safe dict using wire (camelCase) names."""
        return self.model_dump(mode="json", by_alias=True)
