from __future__ import annotations

import logging
import posixpath
import re
from dataclasses import dataclass

from common import commands
from common.errors import ExecutorError, RenameFailure
from panel.probe import Executor, FilesystemProbe


@dataclass(frozen=True)
class WorkingDirectory:
    port: str
    path: str

    def binary_path(self, name: str) -> str:
        return posixpath.join(self.path, name)


class WorkingDirectoryResolver:
    """Finds or builds the per-port directory ``<base_dir>/<prefix><port>``."""

    def __init__(
        self,
        executor: Executor,
        probe: FilesystemProbe,
        base_dir: str = "/data/local/tmp",
        prefix: str = "adirf",
        default_name: str = "frida-server",
    ):
        self.logger = logging.getLogger("panel.workdir")
        self.executor = executor
        self.probe = probe
        self.base_dir = base_dir
        self.prefix = prefix
        self.default_name = default_name
        self._pattern = re.compile(rf"^{re.escape(prefix)}([1-9]\d{{0,4}})$")

    def path_for(self, port: str) -> str:
        return posixpath.join(self.base_dir, f"{self.prefix}{port}")

    async def discover(self) -> tuple[WorkingDirectory, str] | None:
        """Return the canonical directory and the binary name found inside it.

        Only directories whose suffix is a port in canonical form count.
        With several candidates the lexicographically smallest wins.
        """
        entries = await self.probe.list_directory(self.base_dir)
        matches = []
        for entry in sorted(entries):
            m = self._pattern.match(entry)
            if not m or int(m.group(1)) > 65535:
                continue
            if not await self.probe.dir_exists(posixpath.join(self.base_dir, entry)):
                self.logger.debug("ignoring %s, not a directory", entry)
                continue
            matches.append(entry)
        if not matches:
            return None
        if len(matches) > 1:
            self.logger.warning("multiple working directories found, using %s (ignored: %s)", matches[0], matches[1:])
        folder = matches[0]
        wd = WorkingDirectory(port=folder[len(self.prefix):], path=posixpath.join(self.base_dir, folder))
        files = sorted(await self.probe.list_directory(wd.path))
        name = files[0] if files else self.default_name
        self.logger.info("detected working folder %s with server name %s", wd.path, name)
        return wd, name

    async def create_or_reuse(self, port: str) -> WorkingDirectory:
        wd = WorkingDirectory(port=port, path=self.path_for(port))
        await self.executor.execute(commands.mkdir(wd.path))
        self.logger.info("using working folder %s", wd.path)
        return wd

    async def rename(self, old: WorkingDirectory | None, new_port: str) -> WorkingDirectory:
        if old is None:
            return await self.create_or_reuse(new_port)
        new_path = self.path_for(new_port)
        if new_path == old.path:
            return old
        if await self.probe.dir_exists(new_path):
            raise RenameFailure(f"cannot rename {old.path}: {new_path} already exists")
        self.logger.info("port changed, renaming working folder %s -> %s", old.path, new_path)
        try:
            await self.executor.execute(commands.move(old.path, new_path))
        except ExecutorError as exc:
            raise RenameFailure(f"rename {old.path} -> {new_path} failed: {exc}") from exc
        return WorkingDirectory(port=new_port, path=new_path)
