from __future__ import annotations

import shlex
from dataclasses import dataclass
from enum import Enum

EXISTS_TOKEN = "EXISTS"
MISSING_TOKEN = "MISSING"
OK_TOKEN = "OK"
FAIL_TOKEN = "FAIL"


class Op(str, Enum):
    # Probes
    EXISTS = "exists"
    NON_EMPTY = "non_empty"
    DIR_EXISTS = "dir_exists"
    LIST = "list"

    # Filesystem mutation
    MOVE = "move"
    MKDIR = "mkdir"
    CHMOD = "chmod"

    # Processes
    PS_GREP = "ps_grep"
    KILL = "kill"
    LAUNCH = "launch"
    VERSION = "version"

    # Release artifacts
    DOWNLOAD = "download"
    DECOMPRESS = "decompress"


MUTATING_OPS = frozenset({Op.MOVE, Op.MKDIR, Op.CHMOD, Op.DOWNLOAD, Op.DECOMPRESS})


@dataclass(frozen=True)
class Command:
    op: Op
    args: tuple[str, ...]

    @property
    def mutates(self) -> bool:
        return self.op in MUTATING_OPS

    def render(self, busybox: str = "busybox") -> str:
        q = [shlex.quote(a) for a in self.args]
        bb = shlex.quote(busybox)
        if self.op is Op.EXISTS:
            return f"[ -f {q[0]} ] && echo {EXISTS_TOKEN} || echo {MISSING_TOKEN}"
        if self.op is Op.NON_EMPTY:
            return f"[ -s {q[0]} ] && echo {OK_TOKEN} || echo {FAIL_TOKEN}"
        if self.op is Op.DIR_EXISTS:
            return f"[ -d {q[0]} ] && echo {EXISTS_TOKEN} || echo {MISSING_TOKEN}"
        if self.op is Op.LIST:
            # Absent directory lists as empty.
            return f"if [ -d {q[0]} ]; then ls -1 {q[0]}; fi"
        if self.op is Op.MOVE:
            return f"mv -f {q[0]} {q[1]}"
        if self.op is Op.MKDIR:
            return f"mkdir -p {q[0]}"
        if self.op is Op.CHMOD:
            return f"chmod +x {q[0]}"
        if self.op is Op.PS_GREP:
            return f"ps -A | grep -F -e {q[0]} || true"
        if self.op is Op.KILL:
            return f"pkill -f {shlex.quote(_self_excluding_pattern(self.args[0]))} || true"
        if self.op is Op.LAUNCH:
            return f"{q[0]} -D -l {shlex.quote(self.args[1] + ':' + self.args[2])}"
        if self.op is Op.VERSION:
            return f"{q[0]} --version"
        if self.op is Op.DOWNLOAD:
            return f"{bb} wget --no-check-certificate -qO {q[1]} {q[0]}"
        if self.op is Op.DECOMPRESS:
            return f"{bb} unxz -f {q[0]}"
        raise ValueError(f"unsupported op: {self.op}")

    def __str__(self) -> str:
        return f"{self.op.value} {' '.join(self.args)}"


_ERE_SPECIAL = set(".[]()*+?{}|^$\\")


def _self_excluding_pattern(path: str) -> str:
    """Regex for ``pkill -f`` that matches ``path`` but not the shell running pkill.

    The shell's own command line holds the pattern text, where the first
    character is wrapped in brackets and so never reads as the literal path.
    """
    escaped = "".join(f"\\{c}" if c in _ERE_SPECIAL else c for c in path[1:])
    return f"[{path[0]}]{escaped}"


def _abs_path(path: str) -> str:
    p = str(path)
    if not p.startswith("/"):
        raise ValueError(f"path must be absolute: {p!r}")
    if "\x00" in p or "\n" in p:
        raise ValueError(f"path contains control characters: {p!r}")
    return p


def _name(value: str) -> str:
    v = str(value)
    if not v or v in {".", ".."} or "/" in v or "\x00" in v or "\n" in v:
        raise ValueError(f"invalid name: {v!r}")
    return v


def _port(value: str) -> str:
    v = str(value)
    if not v.isdigit() or not 1 <= int(v) <= 65535:
        raise ValueError(f"invalid port: {v!r}")
    return v


def exists(path: str) -> Command:
    return Command(Op.EXISTS, (_abs_path(path),))


def non_empty(path: str) -> Command:
    return Command(Op.NON_EMPTY, (_abs_path(path),))


def dir_exists(path: str) -> Command:
    return Command(Op.DIR_EXISTS, (_abs_path(path),))


def list_dir(path: str) -> Command:
    return Command(Op.LIST, (_abs_path(path),))


def move(src: str, dst: str) -> Command:
    return Command(Op.MOVE, (_abs_path(src), _abs_path(dst)))


def mkdir(path: str) -> Command:
    return Command(Op.MKDIR, (_abs_path(path),))


def chmod_exec(path: str) -> Command:
    return Command(Op.CHMOD, (_abs_path(path),))


def ps_grep(name: str) -> Command:
    return Command(Op.PS_GREP, (_name(name),))


def kill(binary_path: str) -> Command:
    return Command(Op.KILL, (_abs_path(binary_path),))


def launch(binary_path: str, host: str, port: str) -> Command:
    if not host or any(c.isspace() for c in host) or "\x00" in host:
        raise ValueError(f"invalid listen host: {host!r}")
    return Command(Op.LAUNCH, (_abs_path(binary_path), host, _port(port)))


def version(binary_path: str) -> Command:
    return Command(Op.VERSION, (_abs_path(binary_path),))


def download(url: str, dest: str) -> Command:
    if not url.startswith(("https://", "http://")) or any(c.isspace() for c in url):
        raise ValueError(f"invalid download url: {url!r}")
    return Command(Op.DOWNLOAD, (url, _abs_path(dest)))


def decompress(archive: str) -> Command:
    return Command(Op.DECOMPRESS, (_abs_path(archive),))
