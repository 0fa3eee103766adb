from abc import ABC, abstractmethod
from typing import Optional
from shell_models import ShellResult

class CommandExecutor(ABC):
    @abstractmethod
    async def run(self, command: str, cwd: Optional[str] = None) -> ShellResult:
        """원격 호스트에서 셸 명령 하나를 실행하고 캡처된 출력을 반환"""
        pass

    @abstractmethod
    async def health(self) -> bool:
        """실행 게이트웨이에 도달 가능한지 확인"""
        pass

    @abstractmethod
    async def close(self) -> None:
        """executor가 사용한 리소스 정리"""
        pass

    @property
    @abstractmethod
    def executor_type(self) -> str:
        pass
