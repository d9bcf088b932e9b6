from typing import Optional
from uuid import UUID


def to_uuid(value) -> Optional[UUID]:
    """Parse client-supplied ids; anything malformed becomes None."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None
