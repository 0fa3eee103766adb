from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class AuditLogRead(BaseModel):
    id: int
    actor: str
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    detail: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {
        "from_attributes": True
    }
