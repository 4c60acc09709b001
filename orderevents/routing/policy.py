"""Subscription filter policies."""
from typing import Mapping
from pydantic import BaseModel, ConfigDict, Field, field_validator


class FilterPolicy(BaseModel):
    """
    Allow-list match against message attributes.

    Every attribute named in the policy must be present on the message and
    equal to one of its allowed values (AND across attributes). Policies are
    immutable once built.
    """
    model_config = ConfigDict(frozen=True)

    allowlists: dict[str, frozenset[str]] = Field(
        ...,
        description="Attribute name -> allowed string values",
    )

    @field_validator("allowlists")
    @classmethod
    def _non_empty(cls, value: dict[str, frozenset[str]]) -> dict[str, frozenset[str]]:
        if not value:
            raise ValueError("a filter policy needs at least one attribute")
        for name, allowed in value.items():
            if not allowed:
                raise ValueError(f"allow-list for {name!r} is empty")
        return value

    @classmethod
    def event_types(cls, *event_types: str) -> "FilterPolicy":
        """Policy accepting only the given eventType values."""
        return cls(allowlists={"eventType": frozenset(str(t) for t in event_types)})

    def matches(self, attributes: Mapping[str, str]) -> bool:
        """Check if message attributes satisfy every allow-list."""
        for name, allowed in self.allowlists.items():
            value = attributes.get(name)
            if value is None or str(value) not in allowed:
                return False
        return True
