from pydantic import BaseModel
from typing import Optional


class ShellRequest(BaseModel):
    command: str
    cwd: Optional[str] = None


class ShellResult(BaseModel):
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None

    @property
    def output(self) -> str:
        """stdout이 비어 있으면 stderr를 대신 사용"""
        return self.stdout or self.stderr


class OperationResult(BaseModel):
    success: bool
    operation: str
    output: str = ""
    commit_sha: Optional[str] = None
    error: Optional[str] = None
