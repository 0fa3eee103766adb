from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class ErrorLogRead(BaseModel):
    id: int
    code: str
    status_code: int
    message: str
    dev_message: Optional[str] = None
    method: Optional[str] = None
    url: Optional[str] = None
    actor: Optional[str] = None
    created_at: datetime

    model_config = {
        "from_attributes": True
    }
