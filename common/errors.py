from __future__ import annotations


class PanelError(Exception):
    code = "panel_error"


class ExecutorError(PanelError):
    code = "executor_error"

    def __init__(self, message: str, command: str = "", returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class ProbeFailure(PanelError):
    code = "probe_failure"


class MetadataFetchFailure(PanelError):
    code = "metadata_fetch_failure"


class DownloadFailure(PanelError):
    code = "download_failure"


class RenameFailure(PanelError):
    code = "rename_failure"

    def __init__(self, message: str, directory=None, name: str | None = None):
        super().__init__(message)
        # Where things ended up when a later step failed, so callers can resync.
        self.directory = directory
        self.name = name


class StartFailure(PanelError):
    code = "start_failure"


class PreconditionFailure(PanelError):
    code = "precondition_failure"


class StatusTimeout(PanelError):
    code = "status_timeout"
