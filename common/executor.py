from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass

from common.commands import Command
from common.errors import ExecutorError


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    returncode: int


class PrivilegedExecutor:
    """Runs typed commands as superuser through ``su -c``.

    Commands go through one lock: the device exposes a single privileged
    channel and overlapping moves against the same paths would race.
    With an empty ``su_binary`` commands run through ``sh -c`` unelevated.
    """

    def __init__(self, su_binary: str = "su", busybox: str = "busybox", timeout: float = 120.0):
        self.logger = logging.getLogger("panel.executor")
        self.su_binary = su_binary.strip()
        self.busybox = busybox
        self.timeout = timeout
        self._lock = asyncio.Lock()

    def _argv(self, script: str) -> list[str]:
        if self.su_binary:
            return [self.su_binary, "-c", script]
        return ["sh", "-c", script]

    async def execute(self, command: Command) -> CommandResult:
        script = command.render(self.busybox)
        async with self._lock:
            self.logger.debug("exec %s", script)
            try:
                proc = await asyncio.create_subprocess_exec(
                    *self._argv(script),
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except (FileNotFoundError, PermissionError) as exc:
                raise ExecutorError(f"privileged shell unavailable: {exc}", command=script) from exc
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
                raise ExecutorError(f"command timed out after {self.timeout:.0f}s: {command}", command=script)
        out = stdout.decode(errors="replace")
        err = stderr.decode(errors="replace")
        code = proc.returncode if proc.returncode is not None else -1
        if code != 0:
            raise ExecutorError(
                f"command failed ({code}): {command}: {err.strip() or out.strip()}",
                command=script,
                returncode=code,
                stderr=err,
            )
        return CommandResult(stdout=out, stderr=err, returncode=code)
