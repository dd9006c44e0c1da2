"""
Base schemas shared by all models.
"""

from pydantic import BaseModel, ConfigDict
from typing import Any, Optional


class BaseSchema(BaseModel):
    """
    Base for all schemas.

    Features:
        - Auto-trim whitespace from strings
        - Validate on attribute assignment
        - Allow ORM objects (from_attributes)
    """
    model_config = ConfigDict(
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True
    )


def coerce_remote_id(value: Any) -> Optional[str]:
    """
    Remote ids arrive as ints (REST), strings (hints) or bigints (Supabase).

    Stored and compared as plain strings; blanks become None.
    """
    if value is None:
        return None
    text = str(value).strip()
    return text or None
