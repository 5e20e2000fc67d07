import os
import subprocess

import pytest

TCP_HEADER = "  sl  local_address rem_address   st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode\n"
TCP6_HEADER = "  sl  local_address                         remote_address                        st tx_queue rx_queue tr tm->when retrnsmt   uid  timeout inode\n"


def proc_net_line(slot, local, state, inode, remote="00000000:0000"):
    return (
        f"   {slot}: {local} {remote} {state} 00000000:00000000 00:00000000 "
        f"00000000  1000        0 {inode} 1 0000000000000000 100 0 0 10 0\n"
    )


class FakeProc:
    """A minimal /proc tree: process dirs with comm and fd symlinks, plus net tables."""

    def __init__(self, root):
        self.root = root
        (root / "net").mkdir()

    def add_process(self, pid, comm, links):
        pdir = self.root / str(pid)
        (pdir / "fd").mkdir(parents=True)
        if comm is not None:
            (pdir / "comm").write_text(comm + "\n")
        for fd, target in enumerate(links):
            os.symlink(target, pdir / "fd" / str(fd))
        return pdir

    def write_table(self, name, lines, header=TCP_HEADER):
        (self.root / "net" / name).write_text(header + "".join(lines))


@pytest.fixture
def fake_proc(tmp_path):
    return FakeProc(tmp_path)


class FakeRun:
    """Replacement for subprocess.run answering by program name."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append(list(cmd))
        key = cmd[0]
        if key in ("sudo", "pkexec"):
            key = f"{cmd[0]} {cmd[1] if cmd[0] == 'pkexec' else cmd[2]}"
        response = self.responses.get(key, (0, "", ""))
        if callable(response):
            response = response(cmd)
        if isinstance(response, BaseException):
            raise response
        code, out, err = response
        return subprocess.CompletedProcess(cmd, code, out, err)


@pytest.fixture
def fake_run(monkeypatch):
    runner = FakeRun()
    monkeypatch.setattr(subprocess, "run", runner)
    return runner


@pytest.fixture(autouse=True)
def reset_ss_warning(monkeypatch):
    from portslayer import ss

    monkeypatch.setattr(ss, "_degraded_warned", False)
