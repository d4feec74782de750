import asyncio
import os
import shutil

import pytest

from common import commands
from common.errors import ExecutorError
from common.executor import PrivilegedExecutor
from panel.process import AgentProcessController, AgentStatus


@pytest.fixture
def executor():
    # No su on the test host: run through sh -c unelevated.
    return PrivilegedExecutor(su_binary="", timeout=10)


@pytest.mark.asyncio
async def test_exists_and_list_against_real_shell(executor, tmp_path):
    (tmp_path / "adirf27042").mkdir()
    (tmp_path / "adirf27042" / "frida-server").write_text("x")
    result = await executor.execute(commands.exists(str(tmp_path / "adirf27042" / "frida-server")))
    assert result.stdout.strip() == "EXISTS"
    listing = await executor.execute(commands.list_dir(str(tmp_path)))
    assert listing.stdout.split() == ["adirf27042"]
    missing = await executor.execute(commands.list_dir(str(tmp_path / "nope")))
    assert missing.stdout == ""


@pytest.mark.asyncio
async def test_move_with_awkward_names(executor, tmp_path):
    src = tmp_path / "it's $(id)"
    src.write_text("payload")
    dst = tmp_path / "renamed"
    await executor.execute(commands.move(str(src), str(dst)))
    assert dst.read_text() == "payload"
    assert not src.exists()


@pytest.mark.asyncio
async def test_non_zero_exit_raises(executor, tmp_path):
    with pytest.raises(ExecutorError) as info:
        await executor.execute(commands.move(str(tmp_path / "missing"), str(tmp_path / "other")))
    assert info.value.returncode != 0


@pytest.mark.asyncio
async def test_timeout_raises(tmp_path):
    script = tmp_path / "slow"
    script.write_text("#!/bin/sh\nsleep 5\n")
    script.chmod(0o755)
    executor = PrivilegedExecutor(su_binary="", timeout=0.2)
    with pytest.raises(ExecutorError, match="timed out"):
        await executor.execute(commands.version(str(script)))


@pytest.mark.asyncio
async def test_missing_su_binary_raises():
    executor = PrivilegedExecutor(su_binary="/nonexistent/su")
    with pytest.raises(ExecutorError, match="unavailable"):
        await executor.execute(commands.exists("/"))


@pytest.fixture
def fake_agent(tmp_path):
    sleep = shutil.which("sleep")
    pkill = shutil.which("pkill")
    if not sleep or not pkill or os.path.basename(os.path.realpath(sleep)) == "busybox":
        pytest.skip("needs a standalone sleep binary and pkill")
    binary = tmp_path / "adirf27042" / "frida-server"
    binary.parent.mkdir()
    shutil.copy(os.path.realpath(sleep), binary)
    binary.chmod(0o755)
    return str(binary)


@pytest.mark.asyncio
async def test_status_and_stop_against_real_shell(executor, fake_agent):
    proc = await asyncio.create_subprocess_exec(fake_agent, "30")
    try:
        controller = AgentProcessController(executor, settle_delay=0.2, poll_retries=10, poll_interval=0.2)
        assert await controller.wait_for("frida-server", AgentStatus.RUNNING) is AgentStatus.RUNNING

        await controller.stop(fake_agent)
        await asyncio.wait_for(proc.wait(), timeout=5)
        assert await controller.wait_for("frida-server", AgentStatus.STOPPED) is AgentStatus.STOPPED
    finally:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()


@pytest.mark.asyncio
async def test_kill_without_match_succeeds(executor, tmp_path):
    if not shutil.which("pkill"):
        pytest.skip("needs pkill")
    result = await executor.execute(commands.kill(str(tmp_path / "adirf27042" / "frida-server")))
    assert result.returncode == 0
