import signal

import pytest

from nodestats.exec import CommandNotStartedError, exec_command


def test_args_are_kept():
    cmd = exec_command("/bin/sh", "-c", "exit 0")
    assert cmd.args == ["/bin/sh", "-c", "exit 0"]
    assert cmd.pid is None


def test_kill_before_start_raises():
    cmd = exec_command("/bin/sh")
    with pytest.raises(CommandNotStartedError):
        cmd.kill()


def test_wait_before_start_raises():
    cmd = exec_command("/bin/sh")
    with pytest.raises(CommandNotStartedError):
        cmd.wait(1)


def test_start_then_kill():
    cmd = exec_command("/bin/sh", "-c", "sleep 30")
    with pytest.raises(CommandNotStartedError):
        cmd.kill()
    cmd.start()
    cmd.kill()
    assert cmd.wait(10) == -signal.SIGKILL


def test_normal_exit_status():
    cmd = exec_command("/bin/sh", "-c", "exit 3")
    cmd.start()
    assert cmd.wait(10) == 3


def test_start_twice_raises():
    cmd = exec_command("/bin/sh", "-c", "sleep 30")
    cmd.start()
    try:
        with pytest.raises(RuntimeError):
            cmd.start()
    finally:
        cmd.kill()
        cmd.wait(10)


def test_start_missing_program_raises():
    cmd = exec_command("/nonexistent/program")
    with pytest.raises(OSError):
        cmd.start()