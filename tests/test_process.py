import sys

import pytest

from mcsp.errors import InstallerProcessFailed
from mcsp.process import InstallerProcess, run_installer


def python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


def test_lines_are_relayed(tmp_path):
    lines = []
    run_installer(python("print('Downloading libraries'); print('Done')"),
                  tmp_path, "Forge", lines.append)
    assert lines == ["Downloading libraries", "Done"]


def test_runs_in_working_directory(tmp_path):
    run_installer(python("open('marker.txt', 'w').write('ok')"), tmp_path, "Forge")
    assert (tmp_path / "marker.txt").read_text() == "ok"


def test_nonzero_exit_carries_stderr_tail(tmp_path):
    code = ("import sys\n"
            "for i in range(50): print(f'err {i}', file=sys.stderr)\n"
            "sys.exit(3)")
    with pytest.raises(InstallerProcessFailed) as ei:
        run_installer(python(code), tmp_path, "NeoForge")
    e = ei.value
    assert e.exit_code == 3
    assert e.stderr_tail[-1] == "err 49"
    assert len(e.stderr_tail) == 20
    assert e.context["directory"] == str(tmp_path)


def test_large_output_does_not_block(tmp_path):
    code = ("import sys\n"
            "for i in range(20000):\n"
            "    print('x' * 80)\n"
            "    print('y' * 80, file=sys.stderr)")
    count = []
    run_installer(python(code), tmp_path, "Forge", lambda _: count.append(1))
    assert len(count) == 40000


def test_child_is_reaped_when_block_fails(tmp_path):
    with pytest.raises(RuntimeError):
        with InstallerProcess(python("import time; time.sleep(60)"), tmp_path, "Forge") as proc:
            raise RuntimeError("pipeline failed elsewhere")
    assert proc._process is not None
    assert proc._process.poll() is not None
