from pydantic import BaseModel, Field
from typing import Optional

class ComposeUpRequest(BaseModel):
    build: bool = True
    service: Optional[str] = None

class GitPullRequest(BaseModel):
    repo_path: str = Field(description="allowlisted repository path on the host")
