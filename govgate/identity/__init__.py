# Identity
# User profile snapshots resolved from the identity provider

from govgate.identity.models import UserProfile

__all__ = [
    "UserProfile",
]
