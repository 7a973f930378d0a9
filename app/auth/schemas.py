from typing import Dict, Optional
from uuid import UUID

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Authenticated staff member, taken from the access token claims."""

    id: UUID
    role: str
    name: Optional[str] = None
    permissions: Dict[str, Dict[str, bool]] = {}
