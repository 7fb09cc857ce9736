"""
Unit Tests: CLI Entry Point
============================
Tests:
  1. show prints the interpreted config, exit 0
  2. up reconciles through the given runtime, exit 0
  3. Extra arguments reach the config command after the command name
  4. Config errors and runtime failures -> exit 1
  5. --dry-run issues no mutating call
  6. Option mapping onto runtime args
"""

import logging

import pytest

from capitan.cli import build_parser, main, setup_logging, teardown_args

from tests.conftest import FakeRuntime


CONFIG = """#!/bin/sh
echo "global project demo_${1}${2}"
echo "web image nginx:latest"
echo "web scale 2"
"""


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_cmd(tmp_path):
    script = tmp_path / "capitan.cfg.sh"
    script.write_text(CONFIG)
    return f"sh {script}"


@pytest.fixture
def fake():
    runtime = FakeRuntime()
    runtime.add_image("nginx:latest")
    return runtime


class TestMain:

    def test_show(self, config_cmd, fake, capsys):
        assert main(["-c", config_cmd, "show"], runtime=fake) == 0
        out = capsys.readouterr().out
        assert "project_name: demo_show" in out
        assert "demo_show_web_2" in out

    def test_up(self, config_cmd, fake):
        assert main(["-c", config_cmd, "up"], runtime=fake) == 0
        assert fake.ops("create") == ["demo_up_web_1", "demo_up_web_2"]
        assert fake.is_running("demo_up_web_2")

    def test_extra_args_forwarded(self, config_cmd, fake):
        assert main(["-c", config_cmd, "create", "_prod"], runtime=fake) == 0
        assert fake.ops("create") == ["demo_create_prod_web_1", "demo_create_prod_web_2"]

    def test_filter(self, config_cmd, fake):
        assert main(["-c", config_cmd, "-f", "demo_up_web_2", "up"], runtime=fake) == 0
        assert fake.ops("create") == ["demo_up_web_2"]

    def test_config_error(self, tmp_path, fake):
        script = tmp_path / "broken.sh"
        script.write_text("echo 'web bogus 1'\n")
        assert main(["-c", f"sh {script}", "up"], runtime=fake) == 1
        assert fake.calls == []

    def test_missing_config_command(self, fake):
        assert main(["-c", "/nonexistent/capitan.cfg.sh", "ps"], runtime=fake) == 1

    def test_runtime_failure(self, config_cmd, fake):
        fake.fail_on.add(("start", "demo_up_web_1"))
        assert main(["-c", config_cmd, "up"], runtime=fake) == 1
        assert "demo_up_web_2" not in fake.ops("create")

    def test_dry_run(self, config_cmd, fake):
        assert main(["-c", config_cmd, "--dry-run", "up"], runtime=fake) == 0
        assert fake.mutations == []

    def test_stop_reaches_leftovers(self, config_cmd, fake):
        assert main(["-c", config_cmd, "up"], runtime=fake) == 0
        # the config names the project after the command, so demo_up_* are undeclared for stop
        assert main(["-c", config_cmd, "stop", "-t", "4"], runtime=fake) == 0
        assert ("stop", "demo_up_web_2", {"timeout": 4}) in fake.calls
        assert not fake.is_running("demo_up_web_1")


class TestOptions:

    def test_teardown_args(self):
        parser = build_parser()
        assert teardown_args(parser.parse_args(["stop", "-t", "4"])) == {"timeout": 4}
        assert teardown_args(parser.parse_args(["kill", "-s", "SIGTERM"])) == {"signal": "SIGTERM"}
        assert teardown_args(parser.parse_args(["rm", "-f", "-v"])) == {"force": True, "v": True}
        assert teardown_args(parser.parse_args(["ps", "-a"])) == {"all": True}
        assert teardown_args(parser.parse_args(["restart"])) == {}

    def test_global_options(self):
        ns = build_parser().parse_args(["-d", "--dry", "-f", "web", "up", "-a"])
        assert ns.debug and ns.dry_run and ns.attach
        assert ns.filter == "web"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_debug_logging(self):
        setup_logging(debug=True)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("docker").level == logging.WARNING
