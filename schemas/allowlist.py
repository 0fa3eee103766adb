from pydantic import BaseModel
from typing import List

class AllowlistRead(BaseModel):
    repo_paths: List[str] = []
    compose_projects: List[str] = []
    container_names: List[str] = []

class AllowlistUpdate(AllowlistRead):
    pass
