import shlex
import sys
from pathlib import Path

import pytest

from testsmith.client.supervisor import WorkerSupervisor
from testsmith.config import Settings
from testsmith.errors import SpawnError, StreamError
from testsmith.protocol.envelope import MessageType, chat_envelope

FAKE_WORKER = r"""
import json
import os
import sys

init = json.loads(sys.stdin.readline())
assert init == {"type": "init", "data": {"apiKey": "secret"}}
sys.stderr.write("worker log line\n")
print("not an envelope", flush=True)
print(json.dumps({"type": "response", "data": {"status": "initialized", "message": os.environ["TESTSMITH_WORK_DIR"]}}), flush=True)
chat = json.loads(sys.stdin.readline())
print(json.dumps({"type": "response", "data": {"content": "echo: " + chat["data"]["message"]}}), flush=True)
"""


def _settings(tmp_path: Path, script: str) -> Settings:
    worker = tmp_path / "fake_worker.py"
    worker.write_text(script, encoding="utf-8")
    return Settings(
        _env_file=None,
        work_dir=tmp_path,
        worker_dir=tmp_path,
        home=tmp_path / "home",
        worker_command=f"{shlex.quote(sys.executable)} {shlex.quote(str(worker))}",
    )


@pytest.mark.asyncio
async def test_handshake_chat_and_stream_close(tmp_path: Path) -> None:
    async with WorkerSupervisor(_settings(tmp_path, FAKE_WORKER)) as supervisor:
        await supervisor.start("secret")

        ready = await supervisor.next_envelope()
        assert ready.type is MessageType.RESPONSE
        assert ready.data == {"status": "initialized", "message": str(tmp_path.resolve())}

        await supervisor.send(chat_envelope("hi"))
        reply = await supervisor.next_envelope()
        assert reply.data == {"content": "echo: hi"}

        with pytest.raises(StreamError, match="closed unexpectedly"):
            await supervisor.next_envelope()

    assert "worker log line" in (tmp_path / "home" / "worker-error.log").read_text(encoding="utf-8")


@pytest.mark.asyncio
async def test_missing_worker_directory_raises_spawn_error(tmp_path: Path) -> None:
    settings = Settings(_env_file=None, worker_dir=tmp_path / "missing", home=tmp_path / "home")
    with pytest.raises(SpawnError, match="worker directory not found"):
        await WorkerSupervisor(settings).start("secret")


@pytest.mark.asyncio
async def test_missing_entry_point_raises_spawn_error(tmp_path: Path) -> None:
    settings = Settings(
        _env_file=None, worker_dir=tmp_path, home=tmp_path / "home", worker_command="definitely-not-a-binary-xyz"
    )
    with pytest.raises(SpawnError, match="entry point not found"):
        await WorkerSupervisor(settings).start("secret")


@pytest.mark.asyncio
async def test_send_before_start_is_a_stream_error(tmp_path: Path) -> None:
    supervisor = WorkerSupervisor(Settings(_env_file=None, home=tmp_path))
    with pytest.raises(StreamError):
        await supervisor.send(chat_envelope("hi"))


@pytest.mark.asyncio
async def test_kill_terminates_running_worker(tmp_path: Path) -> None:
    script = "import sys, time\nsys.stdin.readline()\ntime.sleep(60)\n"
    supervisor = WorkerSupervisor(_settings(tmp_path, script))
    await supervisor.start("secret")
    assert supervisor.running

    await supervisor.kill()

    assert not supervisor.running
