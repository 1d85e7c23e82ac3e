"""Tests for the supervised probe subprocess."""

import threading

import pytest

from ping_api.probes import PingProcess
from ping_api.probes.ping_process import build_command

from conftest import TARGET_A, success_line


class FakeProcess:
    def __init__(self, lines, exit_code=0):
        self.pid = 4242
        self.stdout = iter(lines)
        self.returncode = exit_code
        self.terminated = False

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        return self.returncode

    def terminate(self):
        self.terminated = True

    def kill(self):
        pass


class FakePopen:
    """Returns one FakeProcess per call, then keeps returning empty ones."""

    def __init__(self, *runs):
        self.runs = list(runs)
        self.calls = []

    def __call__(self, command, **kwargs):
        self.calls.append(command)
        lines = self.runs.pop(0) if self.runs else []
        return FakeProcess(lines)


class TestBuildCommand:

    def test_placeholder_is_substituted(self):
        assert build_command("ping -O {target}", TARGET_A) == ["ping", "-O", TARGET_A]

    def test_target_appended_without_placeholder(self):
        assert build_command("ping -n -O", TARGET_A) == ["ping", "-n", "-O", TARGET_A]


class TestRunOnce:

    def test_lines_are_dispatched_without_newlines(self):
        received = []
        popen = FakePopen([success_line(1, 10.0) + "\n", "\n", success_line(2, 11.0) + "\r\n"])
        probe = PingProcess(TARGET_A, "ping {target}", on_line=lambda t, l: received.append((t, l)), popen=popen)

        probe._run_once()

        assert received == [
            (TARGET_A, success_line(1, 10.0)),
            (TARGET_A, ""),
            (TARGET_A, success_line(2, 11.0)),
        ]
        stats = probe.get_stats()
        assert stats["starts"] == 1
        assert stats["lines"] == 3
        assert stats["last_exit_code"] == 0
        assert stats["running"] is False

    def test_restart_handler_runs_before_output(self):
        order = []
        probe = PingProcess(
            TARGET_A,
            "ping {target}",
            on_line=lambda t, l: order.append("line"),
            on_restart=lambda t: order.append("restart"),
            popen=FakePopen(["x\n"]),
        )

        probe._run_once()

        assert order == ["restart", "line"]

    def test_handler_errors_do_not_stop_reading(self):
        seen = []

        def handler(target, line):
            seen.append(line)
            if line == "bad":
                raise ValueError("nope")

        probe = PingProcess(TARGET_A, "ping {target}", on_line=handler, popen=FakePopen(["bad\n", "good\n"]))

        probe._run_once()

        assert seen == ["bad", "good"]
        assert probe.get_stats()["handler_errors"] == 1

    def test_missing_binary_is_reported(self):
        def popen(command, **kwargs):
            raise FileNotFoundError(command[0])

        probe = PingProcess(TARGET_A, "no-such-ping {target}", on_line=lambda t, l: None, popen=popen)

        probe._run_once()

        assert probe.get_stats()["starts"] == 0


class TestSupervisor:

    def test_exited_process_is_restarted(self):
        restarted = threading.Event()
        restarts = []

        def on_restart(target):
            restarts.append(target)
            if len(restarts) == 2:
                restarted.set()

        popen = FakePopen(["a\n"], ["b\n"])
        probe = PingProcess(TARGET_A, "ping {target}", on_line=lambda t, l: None, on_restart=on_restart, popen=popen)
        probe.INITIAL_BACKOFF = 0.01

        probe.start()
        try:
            assert restarted.wait(timeout=5.0)
        finally:
            probe.stop()

        assert len(popen.calls) >= 2
        assert popen.calls[0] == ["ping", TARGET_A]

    @pytest.mark.parametrize("template", ["ping -O {target}", "ping -O"])
    def test_command_is_fixed_at_construction(self, template):
        probe = PingProcess(TARGET_A, template, on_line=lambda t, l: None, popen=FakePopen())

        assert probe.command == ["ping", "-O", TARGET_A]
