from __future__ import annotations

from typing import Protocol

from common import commands
from common.commands import Command
from common.errors import ExecutorError, ProbeFailure
from common.executor import CommandResult


class Executor(Protocol):
    async def execute(self, command: Command) -> CommandResult: ...


class FilesystemProbe:
    def __init__(self, executor: Executor):
        self.executor = executor

    async def _run(self, command: Command) -> str:
        try:
            result = await self.executor.execute(command)
        except ExecutorError as exc:
            raise ProbeFailure(f"probe failed: {exc}") from exc
        return result.stdout

    async def _sentinel(self, command: Command, yes: str, no: str) -> bool:
        token = (await self._run(command)).strip()
        if token == yes:
            return True
        if token == no:
            return False
        raise ProbeFailure(f"unexpected probe output for {command}: {token!r}")

    async def exists(self, path: str) -> bool:
        return await self._sentinel(commands.exists(path), commands.EXISTS_TOKEN, commands.MISSING_TOKEN)

    async def non_empty(self, path: str) -> bool:
        return await self._sentinel(commands.non_empty(path), commands.OK_TOKEN, commands.FAIL_TOKEN)

    async def dir_exists(self, path: str) -> bool:
        return await self._sentinel(commands.dir_exists(path), commands.EXISTS_TOKEN, commands.MISSING_TOKEN)

    async def list_directory(self, path: str) -> list[str]:
        out = await self._run(commands.list_dir(path))
        return [line.strip() for line in out.splitlines() if line.strip()]
