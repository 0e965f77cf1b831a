import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from procwatch.config import ScriptNotFoundError, parse_config
from procwatch.process_types import ScriptOptions
from procwatch.runner import AdhocBuilder, Command, CommandBuilder, ProcessHandle


class TestCommandBuilder:
    def test_builds_chain_with_shared_options(self):
        cfg = parse_config(
            {
                "watch": False,
                "scripts": {
                    "dev": {
                        "cmd": ["pip install -e .", "python 'my app.py' --port 8000"],
                        "env": {"DEBUG": "1"},
                    }
                },
            }
        )

        commands = CommandBuilder(cfg).build("dev")

        assert [c.argv for c in commands] == [
            ["pip", "install", "-e", "."],
            ["python", "my app.py", "--port", "8000"],
        ]
        assert all(c.options == ScriptOptions(watch=False, env={"DEBUG": "1"}) for c in commands)

    def test_script_watch_overrides_global_default(self):
        cfg = parse_config(
            {"watch": True, "scripts": {"once": {"cmd": "make", "watch": False}}}
        )

        assert CommandBuilder(cfg).options_for("once").watch is False

    def test_watch_defaults_to_true(self):
        cfg = parse_config({"scripts": {"start": "python app.py"}})

        assert CommandBuilder(cfg).build("start")[0].options.watch is True

    def test_blank_commands_are_skipped(self):
        cfg = parse_config({"scripts": {"dev": ["  ", "python app.py"]}})

        assert [c.argv for c in CommandBuilder(cfg).build("dev")] == [
            ["python", "app.py"]
        ]

    def test_relative_cwd_resolved_against_config_file(self, tmp_path):
        cfg = parse_config(
            {"scripts": {"dev": {"cmd": "make", "cwd": "src"}}},
            path=tmp_path / "procwatch.yml",
        )

        options = CommandBuilder(cfg).options_for("dev")

        assert options.cwd == str((tmp_path / "src").resolve())

    def test_unknown_script(self):
        builder = CommandBuilder(parse_config({}))

        assert builder.has_script("nope") is False
        with pytest.raises(ScriptNotFoundError, match="nope"):
            builder.build("nope")

    def test_adhoc_builder(self, tmp_path):
        commands = AdhocBuilder(["python", "app.py"], watch=False, cwd=tmp_path).build(
            "python"
        )

        assert len(commands) == 1
        assert commands[0].argv == ["python", "app.py"]
        assert commands[0].options == ScriptOptions(watch=False, cwd=str(tmp_path))


@pytest.mark.integration
@pytest.mark.asyncio
class TestCommandSpawn:
    async def test_spawn_and_wait_returns_exit_code(self):
        cmd = Command([sys.executable, "-c", "import sys; sys.exit(3)"])

        handle = await cmd.spawn()

        assert handle.pid > 0
        assert await handle.wait() == 3
        assert handle.returncode == 3

    async def test_spawn_uses_env_and_cwd(self, tmp_path: Path):
        out = tmp_path / "out.txt"
        script = (
            "import os, pathlib; "
            "pathlib.Path('out.txt').write_text(os.environ['PROCWATCH_TEST'])"
        )
        cmd = Command(
            [sys.executable, "-c", script],
            options=ScriptOptions(env={"PROCWATCH_TEST": "hello"}, cwd=str(tmp_path)),
        )

        handle = await cmd.spawn()
        assert await handle.wait() == 0

        assert out.read_text() == "hello"

    async def test_missing_executable_raises(self):
        with pytest.raises(FileNotFoundError):
            await Command(["procwatch-definitely-not-a-command"]).spawn()

    async def test_close_terminates_running_process(self):
        cmd = Command([sys.executable, "-c", "import time; time.sleep(30)"])
        handle = await cmd.spawn()

        handle.close()

        assert await handle.wait() != 0

    async def test_kill_terminates_running_process(self):
        cmd = Command([sys.executable, "-c", "import time; time.sleep(30)"])
        handle = await cmd.spawn()

        handle.kill()

        assert await handle.wait() != 0


class TestProcessHandleClose:
    def _process(self, returncode):
        process = MagicMock(spec=["pid", "returncode", "kill", "wait"])
        process.pid = 4321
        process.returncode = returncode
        return process

    def test_close_kills_running_process_through_public_api(self):
        process = self._process(None)

        ProcessHandle(process, ["serve"]).close()

        process.kill.assert_called_once_with()

    def test_close_after_exit_is_a_noop(self):
        process = self._process(0)

        ProcessHandle(process, ["serve"]).close()

        process.kill.assert_not_called()

    def test_close_tolerates_vanished_process(self):
        process = self._process(None)
        process.kill.side_effect = ProcessLookupError

        ProcessHandle(process, ["serve"]).close()

        process.kill.assert_called_once_with()
