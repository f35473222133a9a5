"""
Identity Models

Immutable user snapshots returned by the identity provider.
A fresh profile is fetched each time a security context is built.
"""

from pydantic import BaseModel, ConfigDict, Field


class UserProfile(BaseModel):
    """
    A resolved user.

    Snapshot semantics: never mutated after resolution.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str = Field(
        ...,
        description="Opaque user identifier"
    )
    display_name: str = Field(
        default="",
        description="Human-readable name"
    )
    department: str | None = Field(
        default=None,
        description="Organisational department"
    )
    location: str | None = Field(
        default=None,
        description="Office or region"
    )
    email: str | None = Field(
        default=None,
        description="Contact address"
    )
    active: bool = Field(
        default=True,
        description="Whether the account is enabled"
    )

    def placeholder_values(self) -> dict[str, str | None]:
        """Values available to row rule templates as ${user.<key>}."""
        return {
            "id": self.user_id,
            "name": self.display_name,
            "department": self.department,
            "location": self.location,
            "email": self.email,
        }
