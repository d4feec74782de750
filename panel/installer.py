from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass

from common import commands
from common.errors import DownloadFailure, ExecutorError, MetadataFetchFailure
from common.release import ReleaseFetcher
from panel.probe import Executor, FilesystemProbe
from panel.workdir import WorkingDirectory


@dataclass(frozen=True)
class AgentBinary:
    directory: str
    name: str

    @property
    def path(self) -> str:
        return posixpath.join(self.directory, self.name)


class AgentInstaller:
    """Makes sure the working directory holds a usable agent binary.

    Sources are tried in order: the binary already in place, a copy dropped
    into the staging directory by hand, then a fresh release download. The
    staging directory doubles as the download cache.
    """

    def __init__(
        self,
        executor: Executor,
        probe: FilesystemProbe,
        fetcher: ReleaseFetcher,
        staging_dir: str = "/storage/emulated/0/Download",
        standard_name: str = "frida-server",
    ):
        self.logger = logging.getLogger("panel.installer")
        self.executor = executor
        self.probe = probe
        self.fetcher = fetcher
        self.staging_dir = staging_dir
        self.standard_name = standard_name

    @property
    def staged_binary(self) -> str:
        return posixpath.join(self.staging_dir, self.standard_name)

    @property
    def staged_archive(self) -> str:
        return f"{self.staged_binary}.xz"

    async def _promote(self, src: str, dest: str) -> None:
        await self.executor.execute(commands.move(src, dest))
        await self.executor.execute(commands.chmod_exec(dest))

    async def ensure_installed(
        self,
        directory: WorkingDirectory,
        desired_name: str,
        force: bool = False,
    ) -> AgentBinary:
        if not force:
            current = AgentBinary(directory.path, desired_name)
            if await self.probe.exists(current.path):
                self.logger.info("agent binary found in %s", directory.path)
                return current
            if await self.probe.exists(self.staged_binary):
                target = AgentBinary(directory.path, self.standard_name)
                self.logger.info("found %s in staging, moving it to %s", self.standard_name, directory.path)
                await self._promote(self.staged_binary, target.path)
                return target
        target = AgentBinary(directory.path, desired_name if force else self.standard_name)
        tag = await self.fetch_latest()
        staged = await self.download(tag, force=force)
        await self._promote(staged, target.path)
        self.logger.info("agent %s installed at %s", tag, target.path)
        return target

    async def update(self, directory: WorkingDirectory, name: str) -> AgentBinary:
        """Force refresh: always downloads and replaces ``directory/name``."""
        return await self.ensure_installed(directory, name, force=True)

    async def fetch_latest(self) -> str:
        self.logger.info("fetching latest agent version")
        tag = await self.fetcher.latest_tag()
        if not tag:
            raise MetadataFetchFailure("failed to get latest agent version")
        self.logger.info("latest agent version: %s", tag)
        return tag

    async def download(self, tag: str, force: bool = False) -> str:
        """Fetch and unpack release ``tag`` into staging, return the binary path."""
        archive = self.staged_archive
        await self.executor.execute(commands.mkdir(self.staging_dir))
        if force or not await self.probe.exists(archive):
            url = self.fetcher.asset_url(tag)
            self.logger.info("downloading %s", url)
            try:
                await self.executor.execute(commands.download(url, archive))
            except ExecutorError as exc:
                raise DownloadFailure(f"download of {url} failed: {exc}") from exc
        else:
            self.logger.info("reusing cached archive %s", archive)
        if not await self.probe.non_empty(archive):
            raise DownloadFailure(f"downloaded archive {archive} is missing or empty")
        try:
            await self.executor.execute(commands.decompress(archive))
        except ExecutorError as exc:
            raise DownloadFailure(f"could not extract {archive}: {exc}") from exc
        await self.executor.execute(commands.chmod_exec(self.staged_binary))
        self.logger.info("agent downloaded and extracted")
        return self.staged_binary
