from __future__ import annotations

import asyncio
import logging
from enum import Enum

from common import commands
from common.errors import ExecutorError, StartFailure, StatusTimeout
from panel.probe import Executor


class AgentStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


class AgentProcessController:
    def __init__(
        self,
        executor: Executor,
        listen_host: str = "0.0.0.0",
        settle_delay: float = 1.5,
        poll_retries: int = 3,
        poll_interval: float = 0.5,
    ):
        self.logger = logging.getLogger("panel.process")
        self.executor = executor
        self.listen_host = listen_host
        self.settle_delay = settle_delay
        self.poll_retries = max(1, poll_retries)
        self.poll_interval = poll_interval

    async def status(self, name: str) -> AgentStatus:
        try:
            result = await self.executor.execute(commands.ps_grep(name))
        except ExecutorError as exc:
            self.logger.warning("error checking agent status: %s", exc)
            return AgentStatus.UNKNOWN
        lines = [
            line for line in result.stdout.splitlines()
            if line.strip() and line.split()[-1] != "grep"
        ]
        self.logger.debug("ps output for %s: %s", name, lines)
        return AgentStatus.RUNNING if lines else AgentStatus.STOPPED

    async def start(self, binary_path: str, port: str) -> None:
        try:
            await self.executor.execute(commands.launch(binary_path, self.listen_host, port))
        except ExecutorError as exc:
            raise StartFailure(f"failed to start {binary_path}: {exc}") from exc
        self.logger.info("started agent %s on %s:%s", binary_path, self.listen_host, port)

    async def stop(self, binary_path: str) -> None:
        await self.executor.execute(commands.kill(binary_path))
        self.logger.info("stopped agent %s", binary_path)

    async def wait_for(self, name: str, expected: AgentStatus) -> AgentStatus:
        """Poll until the process table reports ``expected``.

        The launched process shows up asynchronously, so the first query
        happens after the settle delay.
        """
        await asyncio.sleep(self.settle_delay)
        status = AgentStatus.UNKNOWN
        for attempt in range(1, self.poll_retries + 1):
            status = await self.status(name)
            if status is expected:
                return status
            if attempt < self.poll_retries:
                await asyncio.sleep(self.poll_interval)
        raise StatusTimeout(f"agent {name} is {status.value}, expected {expected.value}")

    async def version(self, binary_path: str) -> str | None:
        try:
            result = await self.executor.execute(commands.version(binary_path))
        except ExecutorError:
            return None
        return result.stdout.strip() or None
