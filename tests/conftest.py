from __future__ import annotations

import posixpath
from typing import Any

import pytest

from common import commands
from common.commands import Command, Op
from common.config import load_panel_config
from common.errors import ExecutorError
from common.executor import CommandResult
from common.release import ReleaseFetcher
from panel.session import PanelSession

BASE = "/data/local/tmp"
STAGING = "/storage/emulated/0/Download"


class FakeDevice:
    """In-memory stand-in for the privileged shell of a rooted device."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.executable: set[str] = set()
        self.dirs: set[str] = {"/"}
        self.processes: list[str] = []
        self.calls: list[Command] = []
        self.broken = False
        self.download_mode = "ok"  # ok | empty | error
        self.launch_registers = True
        self.fail_ops: set[Op] = set()
        self.mkdir(BASE)
        self.mkdir(STAGING)

    # setup helpers

    def mkdir(self, path: str) -> None:
        while path not in self.dirs:
            self.dirs.add(path)
            path = posixpath.dirname(path)

    def add_file(self, path: str, content: str = "bin:15.0.0", executable: bool = True) -> None:
        self.mkdir(posixpath.dirname(path))
        self.files[path] = content
        if executable:
            self.executable.add(path)

    def listdir(self, path: str) -> list[str]:
        prefix = path.rstrip("/") + "/"
        children = {
            p[len(prefix):].split("/")[0]
            for p in list(self.files) + list(self.dirs)
            if p.startswith(prefix) and p != prefix
        }
        # Listing order is not sorted on purpose.
        return sorted(children, reverse=True)

    @property
    def mutations(self) -> list[Command]:
        return [c for c in self.calls if c.mutates]

    def ops(self) -> list[Op]:
        return [c.op for c in self.calls]

    # executor interface

    async def execute(self, command: Command) -> CommandResult:
        self.calls.append(command)
        if self.broken or command.op in self.fail_ops:
            raise ExecutorError(f"channel failure: {command}", command=str(command), returncode=1)
        handler = getattr(self, f"_op_{command.op.value}")
        out = handler(*command.args)
        return CommandResult(stdout=out or "", stderr="", returncode=0)

    def _fail(self, msg: str) -> None:
        raise ExecutorError(msg, returncode=1, stderr=msg)

    def _op_exists(self, path: str) -> str:
        return commands.EXISTS_TOKEN if path in self.files else commands.MISSING_TOKEN

    def _op_non_empty(self, path: str) -> str:
        return commands.OK_TOKEN if self.files.get(path) else commands.FAIL_TOKEN

    def _op_dir_exists(self, path: str) -> str:
        return commands.EXISTS_TOKEN if path in self.dirs else commands.MISSING_TOKEN

    def _op_list(self, path: str) -> str:
        if path not in self.dirs:
            return ""
        return "".join(f"{name}\n" for name in self.listdir(path))

    def _op_mkdir(self, path: str) -> str:
        if path in self.files:
            self._fail(f"mkdir: {path}: File exists")
        self.mkdir(path)
        return ""

    def _op_move(self, src: str, dst: str) -> str:
        if dst in self.dirs:
            dst = posixpath.join(dst, posixpath.basename(src))
        if posixpath.dirname(dst) not in self.dirs:
            self._fail(f"mv: {dst}: No such file or directory")
        if src in self.files:
            self.files[dst] = self.files.pop(src)
            if src in self.executable:
                self.executable.discard(src)
                self.executable.add(dst)
            return ""
        if src in self.dirs:
            prefix = src + "/"
            self.dirs = {dst + d[len(src):] if d == src or d.startswith(prefix) else d for d in self.dirs}
            self.files = {
                (dst + p[len(src):] if p.startswith(prefix) else p): c for p, c in self.files.items()
            }
            self.executable = {dst + p[len(src):] if p.startswith(prefix) else p for p in self.executable}
            return ""
        self._fail(f"mv: {src}: No such file or directory")
        return ""

    def _op_chmod(self, path: str) -> str:
        if path not in self.files:
            self._fail(f"chmod: {path}: No such file or directory")
        self.executable.add(path)
        return ""

    def _op_ps_grep(self, name: str) -> str:
        lines = [
            f"root          {4000 + i} 1 10886048  31360 0  0 S {posixpath.basename(p)}\n"
            for i, p in enumerate(self.processes)
            if name in posixpath.basename(p)
        ]
        return "".join(lines)

    def _op_kill(self, binary_path: str) -> str:
        self.processes = [p for p in self.processes if binary_path not in p]
        return ""

    def _op_launch(self, binary_path: str, host: str, port: str) -> str:
        if binary_path not in self.files or binary_path not in self.executable:
            self._fail(f"sh: {binary_path}: not found")
        if self.launch_registers:
            self.processes.append(binary_path)
        return ""

    def _op_version(self, binary_path: str) -> str:
        content = self.files.get(binary_path)
        if content is None or binary_path not in self.executable:
            self._fail(f"sh: {binary_path}: not found")
        return content.split(":", 1)[-1] + "\n"

    def _op_download(self, url: str, dest: str) -> str:
        if posixpath.dirname(dest) not in self.dirs:
            self._fail("wget: can't open output file")
        if self.download_mode == "error":
            self.files[dest] = ""
            self._fail("wget: server returned error: HTTP/1.1 404 Not Found")
        tag = url.rstrip("/").split("/")[-2]
        self.files[dest] = "" if self.download_mode == "empty" else f"xz:{tag}"
        return ""

    def _op_decompress(self, archive: str) -> str:
        if not archive.endswith(".xz") or archive not in self.files:
            self._fail(f"unxz: {archive}: No such file or directory")
        out = archive[: -len(".xz")]
        self.files[out] = self.files.pop(archive).replace("xz:", "bin:", 1)
        self.executable.discard(out)
        return ""


class FakeFetcher(ReleaseFetcher):
    def __init__(self, tag: str | None = "16.1.0"):
        super().__init__(
            "https://api.github.com/repos/frida/frida/releases/latest",
            "https://github.com/frida/frida/releases/download/{tag}/frida-server-{tag}-android-{arch}.xz",
        )
        self.tag = tag
        self.calls = 0

    async def latest_tag(self) -> str | None:
        self.calls += 1
        return self.tag


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def config() -> dict[str, Any]:
    cfg = load_panel_config()
    cfg["settle_delay"] = 0.0
    cfg["status_poll_interval"] = 0.0
    return cfg


@pytest.fixture
def session(config: dict[str, Any], device: FakeDevice, fetcher: FakeFetcher) -> PanelSession:
    return PanelSession(config, device, fetcher)
