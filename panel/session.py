from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

from common.config import validate_name, validate_port
from common.errors import PanelError, PreconditionFailure, RenameFailure
from common.executor import PrivilegedExecutor
from common.log import LogBuffer
from common.release import ReleaseFetcher
from panel.installer import AgentInstaller
from panel.probe import Executor, FilesystemProbe
from panel.process import AgentProcessController, AgentStatus
from panel.reconciler import ConfigurationReconciler
from panel.workdir import WorkingDirectory, WorkingDirectoryResolver


class AgentState(str, Enum):
    UNINSTALLED = "uninstalled"
    INSTALLING = "installing"
    STOPPED = "stopped"
    RUNNING = "running"


class PanelSession:
    """Single-writer owner of the working directory, port and binary name.

    Every public operation holds ``_lock`` for its whole duration, so
    initialize, start, stop, update and reconfigure never interleave.
    """

    def __init__(
        self,
        config: dict[str, Any],
        executor: Executor,
        fetcher: ReleaseFetcher,
        log_buffer: LogBuffer | None = None,
    ):
        self.logger = logging.getLogger("panel.session")
        self.config = config
        self.default_port = str(config["default_port"])
        self.default_name = str(config["default_name"])
        self.fetcher = fetcher
        self.log_buffer = log_buffer
        self.probe = FilesystemProbe(executor)
        self.resolver = WorkingDirectoryResolver(
            executor,
            self.probe,
            base_dir=config["base_dir"],
            prefix=config["dir_prefix"],
            default_name=self.default_name,
        )
        self.installer = AgentInstaller(
            executor,
            self.probe,
            fetcher,
            staging_dir=config["staging_dir"],
            standard_name=self.default_name,
        )
        self.controller = AgentProcessController(
            executor,
            listen_host=config["listen_host"],
            settle_delay=float(config["settle_delay"]),
            poll_retries=int(config["status_poll_retries"]),
            poll_interval=float(config["status_poll_interval"]),
        )
        self.reconciler = ConfigurationReconciler(executor, self.probe, self.resolver, self.controller)
        self.working_dir: WorkingDirectory | None = None
        self.binary_name = self.default_name
        self.state = AgentState.UNINSTALLED
        self.status = AgentStatus.UNKNOWN
        self.installed_version: str | None = None
        self.latest_version: str | None = None
        self.last_error = ""
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: dict[str, Any], log_buffer: LogBuffer | None = None) -> "PanelSession":
        executor = PrivilegedExecutor(
            su_binary=str(config["su_binary"]),
            busybox=str(config["busybox"]),
            timeout=float(config["command_timeout"]),
        )
        fetcher = ReleaseFetcher(
            config["release_api_url"],
            config["release_asset_url"],
            arch=str(config["arch"]),
            timeout=float(config["release_timeout"]),
        )
        return cls(config, executor, fetcher, log_buffer=log_buffer)

    @property
    def port(self) -> str:
        return self.working_dir.port if self.working_dir else self.default_port

    @property
    def binary_path(self) -> str | None:
        if self.working_dir is None:
            return None
        return self.working_dir.binary_path(self.binary_name)

    def _fail(self, exc: PanelError) -> None:
        self.last_error = f"{exc.code}: {exc}"
        self.logger.error("%s", exc)

    def _settle_state(self) -> None:
        if self.state is AgentState.UNINSTALLED or self.state is AgentState.INSTALLING:
            return
        self.state = AgentState.RUNNING if self.status is AgentStatus.RUNNING else AgentState.STOPPED

    async def initialize(self, install: bool = True) -> None:
        """Discover or create the working directory, then make sure a binary is present."""
        async with self._lock:
            self.logger.info("initializing agent")
            try:
                found = await self.resolver.discover()
                if found:
                    self.working_dir, self.binary_name = found
                else:
                    self.working_dir = await self.resolver.create_or_reuse(self.default_port)
                    self.binary_name = self.default_name
                if install:
                    await self._install_locked(force=False)
                elif await self.probe.exists(self.working_dir.binary_path(self.binary_name)):
                    self.state = AgentState.STOPPED
            except PanelError as exc:
                self._fail(exc)
            await self._refresh_locked(fetch_latest=True)

    async def _install_locked(self, force: bool) -> None:
        assert self.working_dir is not None
        previous = self.state
        self.state = AgentState.INSTALLING
        try:
            if force:
                binary = await self.installer.update(self.working_dir, self.binary_name)
            else:
                binary = await self.installer.ensure_installed(self.working_dir, self.binary_name)
        except PanelError:
            self.state = previous if previous is not AgentState.INSTALLING else AgentState.UNINSTALLED
            raise
        self.binary_name = binary.name
        self.state = AgentState.STOPPED
        self.last_error = ""

    async def _refresh_locked(self, fetch_latest: bool = False) -> None:
        self.status = await self.controller.status(self.binary_name)
        if self.state is AgentState.UNINSTALLED and self.status is AgentStatus.RUNNING:
            self.state = AgentState.RUNNING
        self._settle_state()
        path = self.binary_path
        self.installed_version = await self.controller.version(path) if path else None
        if fetch_latest:
            self.latest_version = await self.fetcher.latest_tag()

    async def refresh(self, fetch_latest: bool = True) -> dict[str, Any]:
        async with self._lock:
            await self._refresh_locked(fetch_latest=fetch_latest)
            return self.snapshot()

    async def start(self, port: Any = None, name: Any = None) -> dict[str, Any]:
        """Start the agent, applying a pending port/name first when one is given."""
        async with self._lock:
            if port is not None or name is not None:
                await self._reconfigure_locked(port, name)
            if self.state is AgentState.UNINSTALLED:
                raise PreconditionFailure("agent is not installed")
            self.status = await self.controller.status(self.binary_name)
            if self.status is AgentStatus.RUNNING:
                self._settle_state()
                return self.snapshot()
            path = self.binary_path
            assert path is not None
            try:
                await self.controller.start(path, self.port)
                self.status = await self.controller.wait_for(self.binary_name, AgentStatus.RUNNING)
            except PanelError as exc:
                self._fail(exc)
                self.status = await self.controller.status(self.binary_name)
                self._settle_state()
                raise
            self.last_error = ""
            self._settle_state()
            return self.snapshot()

    async def stop(self) -> dict[str, Any]:
        async with self._lock:
            path = self.binary_path
            if path is None:
                raise PreconditionFailure("no working directory resolved")
            try:
                await self.controller.stop(path)
                self.status = await self.controller.wait_for(self.binary_name, AgentStatus.STOPPED)
            except PanelError as exc:
                self._fail(exc)
                self.status = await self.controller.status(self.binary_name)
                self._settle_state()
                raise
            self.last_error = ""
            self._settle_state()
            return self.snapshot()

    async def toggle(self, running: bool, port: Any = None, name: Any = None) -> dict[str, Any]:
        if running:
            return await self.start(port=port, name=name)
        return await self.stop()

    async def update(self) -> dict[str, Any]:
        """Re-download the latest release over the installed binary."""
        async with self._lock:
            self.status = await self.controller.status(self.binary_name)
            if self.status is not AgentStatus.STOPPED:
                raise PreconditionFailure("please stop the server before updating")
            if self.working_dir is None:
                self.working_dir = await self.resolver.create_or_reuse(self.default_port)
            try:
                await self._install_locked(force=True)
            except PanelError as exc:
                self._fail(exc)
                raise
            await self._refresh_locked(fetch_latest=True)
            self.logger.info("agent updated to %s", self.installed_version or self.latest_version)
            return self.snapshot()

    async def install(self) -> dict[str, Any]:
        async with self._lock:
            if self.working_dir is None:
                self.working_dir = await self.resolver.create_or_reuse(self.default_port)
            try:
                await self._install_locked(force=False)
            except PanelError as exc:
                self._fail(exc)
                raise
            await self._refresh_locked()
            return self.snapshot()

    async def reconfigure(self, port: Any = None, name: Any = None) -> dict[str, Any]:
        async with self._lock:
            await self._reconfigure_locked(port, name)
            return self.snapshot()

    async def _reconfigure_locked(self, port: Any, name: Any) -> None:
        desired_port = validate_port(port if port is not None else self.port, self.default_port)
        desired_name = validate_name(name if name is not None else self.binary_name, self.default_name)
        if (
            self.working_dir is not None
            and desired_port == self.working_dir.port
            and desired_name == self.binary_name
        ):
            return
        try:
            self.working_dir, self.binary_name = await self.reconciler.apply(
                self.working_dir, self.binary_name, desired_port, desired_name
            )
        except RenameFailure as exc:
            if exc.directory is not None:
                self.working_dir = exc.directory
            if exc.name is not None:
                self.binary_name = exc.name
            self._fail(exc)
            raise
        except PanelError as exc:
            self._fail(exc)
            raise
        if desired_name != self.binary_name:
            self.last_error = f"rename_failure: binary {self.binary_name} not found, name unchanged"

    def snapshot(self) -> dict[str, Any]:
        return {
            "port": self.port,
            "name": self.binary_name,
            "working_dir": self.working_dir.path if self.working_dir else None,
            "binary_path": self.binary_path,
            "state": self.state.value,
            "running": self.status is AgentStatus.RUNNING,
            "status": self.status.value,
            "installed_version": self.installed_version or "not installed",
            "latest_version": self.latest_version,
            "last_error": self.last_error,
        }

    def log_lines(self) -> list[str]:
        return self.log_buffer.snapshot() if self.log_buffer else []
