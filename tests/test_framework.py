import subprocess
import sys
from unittest import mock

import pytest

from kdnsaux.e2e.framework import Framework, get_framework, init_framework
from kdnsaux.e2e.logger import FatalError
from kdnsaux.e2e.options import default_options


class FakeCluster:
    def __init__(self):
        self.events = []

    def set_up(self):
        self.events.append("set_up")

    def tear_down(self):
        self.events.append("tear_down")


@pytest.fixture
def framework(tmp_path):
    options = default_options(str(tmp_path / "base"), str(tmp_path / "work"))
    (tmp_path / "work" / "logs").mkdir(parents=True)
    return Framework(options=options, docker=None, cluster=FakeCluster())


def test_logfile_names(framework, tmp_path):
    work = str(tmp_path / "work")
    assert framework.stdout_logfile("kube-dns") == f"{work}/logs/kube-dns.out"
    assert framework.stderr_logfile("kube-dns") == f"{work}/logs/kube-dns.err"


def test_path_is_absolute_and_normalized(framework, tmp_path):
    assert framework.path("bin/amd64/kube-dns") == str(
        tmp_path / "base" / "bin" / "amd64" / "kube-dns"
    )
    assert framework.path("../other") == str(tmp_path / "other")


def test_set_up_and_tear_down_delegate(framework):
    framework.set_up()
    framework.tear_down()
    assert framework.cluster.events == ["set_up", "tear_down"]


def test_run_in_background_writes_logs(framework):
    code = "import sys; print('hello'); sys.stderr.write('oops')"
    process = framework.run_in_background("proc", sys.executable, "-c", code)
    assert process.wait(timeout=30) == 0
    assert framework.processes["proc"] is process
    with open(framework.stdout_logfile("proc")) as out:
        assert out.read().strip() == "hello"
    with open(framework.stderr_logfile("proc")) as err:
        assert err.read() == "oops"


def test_run_in_background_rejects_duplicate_name(framework):
    framework.run_in_background("dup", sys.executable, "-c", "pass").wait(timeout=30)
    with pytest.raises(FatalError):
        framework.run_in_background("dup", sys.executable, "-c", "pass")
    assert len(framework.processes) == 1


def test_run_in_background_without_log_dir_is_fatal(tmp_path):
    options = default_options(str(tmp_path), str(tmp_path / "missing"))
    fr = Framework(options=options, docker=None, cluster=FakeCluster())
    with pytest.raises(FatalError):
        fr.run_in_background("x", sys.executable, "-c", "pass")
    assert fr.processes == {}


def test_tear_down_dumps_logs_after_failure(framework, capsys):
    code = "import sys; print('from-stdout'); sys.stderr.write('from-stderr')"
    framework.run_in_background("p", sys.executable, "-c", code).wait(timeout=30)
    framework.failed = True
    framework.tear_down()
    err = capsys.readouterr().err
    assert "from-stdout" in err
    assert "from-stderr" in err
    assert err.index("from-stdout") < err.index("from-stderr")


def test_tear_down_without_failure_dumps_nothing(framework, capsys):
    framework.run_in_background("p", sys.executable, "-c", "print('quiet')").wait(
        timeout=30
    )
    framework.tear_down()
    assert "quiet" not in capsys.readouterr().err


def test_get_framework_before_init_is_fatal():
    with pytest.raises(FatalError):
        get_framework()


def test_init_framework_requires_sudo(tmp_path):
    refused = subprocess.CompletedProcess([], 1, b"", b"")
    with mock.patch("subprocess.run", return_value=refused):
        with pytest.raises(FatalError):
            init_framework(str(tmp_path), str(tmp_path / "work"))
    assert not (tmp_path / "work" / "logs").exists()