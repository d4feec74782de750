from __future__ import annotations

import logging

from common import commands
from common.errors import ExecutorError, PanelError, PreconditionFailure, RenameFailure
from panel.probe import Executor, FilesystemProbe
from panel.process import AgentProcessController, AgentStatus
from panel.workdir import WorkingDirectory, WorkingDirectoryResolver


class ConfigurationReconciler:
    """Moves the working directory and binary to match a new (port, name)."""

    def __init__(
        self,
        executor: Executor,
        probe: FilesystemProbe,
        resolver: WorkingDirectoryResolver,
        controller: AgentProcessController,
    ):
        self.logger = logging.getLogger("panel.reconciler")
        self.executor = executor
        self.probe = probe
        self.resolver = resolver
        self.controller = controller

    async def apply(
        self,
        directory: WorkingDirectory | None,
        current_name: str,
        desired_port: str,
        desired_name: str,
    ) -> tuple[WorkingDirectory, str]:
        status = await self.controller.status(current_name)
        if status is not AgentStatus.STOPPED:
            raise PreconditionFailure(f"cannot reconfigure while agent is {status.value}, stop it first")
        # Directory first, then the binary inside the directory now in use.
        directory = await self.resolver.rename(directory, desired_port)
        try:
            name = await self.rename_binary(directory, current_name, desired_name)
        except RenameFailure as exc:
            exc.directory = directory
            raise
        except PanelError as exc:
            raise RenameFailure(
                f"binary rename failed after moving to {directory.path}: {exc}", directory=directory
            ) from exc
        return directory, name

    async def rename_binary(self, directory: WorkingDirectory, current_name: str, desired_name: str) -> str:
        if current_name == desired_name:
            self.logger.info("server name unchanged, no renaming needed")
            return current_name
        old_path = directory.binary_path(current_name)
        new_path = directory.binary_path(desired_name)
        if not await self.probe.exists(old_path):
            self.logger.warning("old binary %s not found, cannot rename binary", old_path)
            return current_name
        if await self.probe.exists(new_path):
            raise RenameFailure(f"cannot rename {old_path}: {new_path} already exists")
        self.logger.info("renaming binary %s -> %s", old_path, new_path)
        try:
            await self.executor.execute(commands.move(old_path, new_path))
        except ExecutorError as exc:
            raise RenameFailure(f"rename {old_path} -> {new_path} failed: {exc}") from exc
        try:
            await self.executor.execute(commands.chmod_exec(new_path))
        except ExecutorError as exc:
            raise RenameFailure(f"chmod {new_path} failed: {exc}", name=desired_name) from exc
        return desired_name
