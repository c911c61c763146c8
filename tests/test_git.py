import io
import subprocess
from unittest import mock

import pytest

from sfcli import git

B64_HEAD = (
    "eyJzaXplIjogIkFVVE8iLCAiZGlzayI6IDEwMjQsICJhY2Nlc3MiOiB7InNzaCI6ICJjb250cmlidXRvciJ9LCAicmVsYXRpb25zaGlwcyI6IHt9"
    "LCAibW91bnRzIjogeyIvdmFyIjogeyJzb3VyY2UiOiAibG9jYWwiLCAic291cmNlX3BhdGgiOiAidmFyIn19LCAidGltZXpvbmUiOiBudWxsLCAidmFy"
    "aWFibGVzIjoge30sICJuYW1lIjogImFwcCIsICJ0eXBlIjogImdvbGFuZzoxLjExIiwgInJ1bnRpbWUiOiB7fSwgInByZWZsaWdodCI6IHsiZW5hYmxl"
    "ZCI6IHRydWUsICJpZ25vcmVkX3J1bGVzIjogW119LCAiZGVwZW5kZW5jaWVzIjoge30sICJidWlsZC"
)
B64_TAIL = (
    "I6IHsiZmxhdm9yIjogIm5vbmUifSwgIndlYiI6IHsibG9jYXRpb25zIjogeyIvIjogeyJyb290IjogbnVsbCwgImV4cGlyZXMiOiAiLTFzIiwgInBh"
    "c3N0aHJ1IjogdHJ1ZSwgInNjcmlwdHMiOiB0cnVlLCAiYWxsb3ciOiBmYWxzZSwgImhlYWRlcnMiOiB7fSwgInJ1bGVzIjoge319fSwgImNvbW1hbmRz"
    "IjogeyJzdGFydCI6ICJzY2VudiAvYXBwL3N0cmlwZS1ub3RpZmljYXRpb25zIiwgInN0b3AiOiBudWxsfSwgInVwc3RyZWFtIjogeyJzb2NrZXRfZmFt"
    "aWx5IjogInRjcCIsICJwcm90b2NvbCI6ICJodHRwIn0sICJtb3ZlX3RvX3Jvb3QiOiBmYWxzZX0sICJob29rcyI6IHsiYnVpbGQiOiAic2V0IC1lIC14"
    "XG5cblxuXG5cblxuXG5cblxuXG5jdXJsIC1zIGh0dHBzOi8vZ2V0LnN5bWZvbnkuY29tL2Nsb3VkL2NvbmZpZ3VyYXRvciB8ICg+JjIgYmFzaClcbmdvIGJ1"
    "aWxkXG4iLCAiZGVwbG95IjogbnVsbCwgInBvc3RfZGVwbG95IjogbnVsbH0sICJjcm9ucyI6IHt9LCAid29ya2VycyI6IHt9fQ=="
)

HEAD_CHUNK = "        W: + echo " + B64_HEAD
TAIL_CHUNK = B64_TAIL + "\n        W: + base64 --decode\n"

HOST = "test-deployment-failing-gbppxsi-4xfrp6lcgobc4.eu.example.com"

CHUNKS = [
    "\n",
    "Enumerating objects: 7, done.\n",
    "Counting objects: 0% (0/7), done.\r",
    "Counting objects: 57% (4/7), done.\r",
    "Counting objects: 100% (7/7), done.\nDelta compression using up to 4 threads\n",
    "Compressing objects: 100% (4/4), done.\n",
    "Writing objects: 100% (4/4), 1.05 KiB | 1.05 MiB/s, done.\nTotal 4 (delta 2), reused 1 (delta 0)\n",
    "\n",
    "Validating sub",
    "modules\n",
    "\n",
    "Validating configuration files\n",
    "\n",
    "Processing activity: A Developer pushed to test-deployment-failing\n",
    "    Found 1 new commit\n",
    "\n",
    "    Building application 'app' (runtime type: python:3.11, tree: 5e8278e)\n",
    "      Generating runtime configuration.\n",
    "\n",
    "      Executing build hook...\n",
    "        W: + curl -s https://get.example.com/cloud/configurator\n        W: + bash\n",
    "        W: + mkdir -p /app/.global/bin/\n",
    "        W: + tar -C /app/.global/bin/ -jxpf -\n",
    "        W: + curl -s https://get.example.com/cloud/tools.tar.bz2\n",
    "        W: + echo -e ''\n",
    "        W: + echo 'export PATH=/app/bin:/app/vendor/bin:$PATH $(scenv)'\n",
    HEAD_CHUNK,
    TAIL_CHUNK,
    "        W: + json_pp\n",
    "        W: + grep '\"type\" : \"php'\n",
    "        W: + base64 --decode\n",
    "        W: + exit 0\n",
    "        W: + make build\n",
    "        W: deps: finding example.com/slack v0.4.0\n",
    "        W: [...]\n",
    "        W: deps: downloading example.com/websocket v1.4.0\n        W: deps: downloading example.com/errors v0.8.0\n",
    "\n      Executing pre-flight checks...\n",
    "\n      Compressing application.\n",
    "      Beaming package to its final destination.\n",
    "\n    Provisioning certificates\n      Environment certificates\n"
    "      - certificate d22187d: expiring on 2019-01-28 07:13:00+00:00, covering " + HOST + "\n"
    "\n\n    Re-deploying environment 4xfrp6lcgobc4-test-deployment-failing-gbppxsi\n",
    "      Environment configuration\n",
    "        app (type: python:3.11, size: S, disk: 1024)\n",
    "\n",
    "      Environment routes\n",
    "        http://" + HOST + "/ redirects to https://" + HOST + "/\n",
    "        https://" + HOST + "/ is served by application 'app'\n",
    "\n",
    "\n",
    "To git.eu.example.com:4xfrp6lcgobc4.git\n   72daff6..2c02b16  HEAD -> test-deployment-failing\n",
]

EXPECTED = (
    "\n"
    "  Enumerating objects: 7, done.\n"
    "  Counting objects: 0% (0/7), done.\r"
    "  Counting objects: 57% (4/7), done.\r"
    "  Counting objects: 100% (7/7), done.\n"
    "  Delta compression using up to 4 threads\n"
    "  Compressing objects: 100% (4/4), done.\n"
    "  Writing objects: 100% (4/4), 1.05 KiB | 1.05 MiB/s, done.\n"
    "  Total 4 (delta 2), reused 1 (delta 0)\n"
    "\n"
    "  Validating submodules\n"
    "\n"
    "  Validating configuration files\n"
    "\n"
    "  Processing activity: A Developer pushed to test-deployment-failing\n"
    "      Found 1 new commit\n"
    "\n"
    "      Building application 'app' (runtime type: python:3.11, tree: 5e8278e)\n"
    "        Generating runtime configuration.\n"
    "\n"
    "        Executing build hook...\n"
    "          W: + curl -s https://get.example.com/cloud/configurator\n"
    "          W: + bash\n"
    "          W: + mkdir -p /app/.global/bin/\n"
    "          W: + tar -C /app/.global/bin/ -jxpf -\n"
    "          W: + curl -s https://get.example.com/cloud/tools.tar.bz2\n"
    "          W: + echo -e ''\n"
    "          W: + echo 'export PATH=/app/bin:/app/vendor/bin:$PATH $(scenv)'\n"
    "          W: + echo " + B64_HEAD + B64_TAIL + "\n"
    "          W: + base64 --decode\n"
    "          W: + json_pp\n"
    "          W: + grep '\"type\" : \"php'\n"
    "          W: + base64 --decode\n"
    "          W: + exit 0\n"
    "          W: + make build\n"
    "          W: deps: finding example.com/slack v0.4.0\n"
    "          W: [...]\n"
    "          W: deps: downloading example.com/websocket v1.4.0\n"
    "          W: deps: downloading example.com/errors v0.8.0\n"
    "\n"
    "        Executing pre-flight checks...\n"
    "\n"
    "        Compressing application.\n"
    "        Beaming package to its final destination.\n"
    "\n"
    "      Provisioning certificates\n"
    "        Environment certificates\n"
    "        - certificate d22187d: expiring on 2019-01-28 07:13:00+00:00, covering " + HOST + "\n"
    "\n"
    "\n"
    "      Re-deploying environment 4xfrp6lcgobc4-test-deployment-failing-gbppxsi\n"
    "        Environment configuration\n"
    "          app (type: python:3.11, size: S, disk: 1024)\n"
    "\n"
    "        Environment routes\n"
    "          http://" + HOST + "/ redirects to https://" + HOST + "/\n"
    "          https://" + HOST + "/ is served by application 'app'\n"
    "\n"
    "\n"
    "  To git.eu.example.com:4xfrp6lcgobc4.git\n"
    "     72daff6..2c02b16  HEAD -> test-deployment-failing\n"
)


def test_git_output_writer_indents_lines():
    out = io.StringIO()
    writer = git.GitOutputWriter(out)
    for chunk in CHUNKS:
        writer.write(chunk)
    assert out.getvalue() == EXPECTED


def test_git_output_writer_returns_written_length():
    writer = git.GitOutputWriter(io.StringIO())
    assert writer.write(HEAD_CHUNK) == 440
    assert writer.write(TAIL_CHUNK) == 712


def test_git_output_writer_holds_incomplete_line():
    out = io.StringIO()
    writer = git.GitOutputWriter(out)
    writer.write("partial")
    assert out.getvalue() == ""
    writer.write(" line\n")
    assert out.getvalue() == "  partial line\n"


def _completed(stdout, returncode=0):
    return subprocess.CompletedProcess(args=["git"], returncode=returncode, stdout=stdout)


@mock.patch("subprocess.run")
def test_get_current_branch_strips_output(run):
    run.return_value = _completed("main\n")
    assert git.get_current_branch("/repo") == "main"
    assert run.call_args.args[0] == ["git", "symbolic-ref", "--short", "HEAD"]
    assert run.call_args.kwargs["cwd"] == "/repo"


@mock.patch("subprocess.run")
def test_get_current_branch_empty_on_failure(run):
    run.return_value = _completed("fatal: ref HEAD is not a symbolic ref\n", 128)
    assert git.get_current_branch("/repo") == ""


@mock.patch("subprocess.run", side_effect=FileNotFoundError("git"))
def test_get_current_branch_without_git(run):
    assert git.get_current_branch("/repo") == ""


@mock.patch("subprocess.run")
def test_exit_status_one_is_command_failed(run):
    run.return_value = _completed("boom", 1)
    with pytest.raises(git.GitError, match="Command failed") as info:
        git.reset_hard("/repo", "HEAD~1")
    assert info.value.output == "boom"
    assert run.call_args.args[0] == ["git", "reset", "--hard", "HEAD~1"]


@mock.patch("subprocess.run")
def test_other_exit_status_raises(run):
    run.return_value = _completed("", 128)
    with pytest.raises(git.GitError) as info:
        git.run_git("/repo", ["status"])
    assert info.value.returncode == 128


@mock.patch("subprocess.run")
def test_fetch_arguments(run):
    run.return_value = _completed("")
    assert git.fetch("/repo", "origin", "main") is None
    assert run.call_args.args[0] == ["git", "fetch", "origin", "main"]
    assert git.fetch("/repo", "origin") is None
    assert run.call_args.args[0] == ["git", "fetch", "origin"]


@pytest.mark.parametrize(
    "upstream, remotes, expected",
    [
        ("origin/feature/x\n", ("origin",), "feature/x"),
        ("origin/main\n", ("upstream", "origin"), "main"),
        ("other/main\n", ("origin",), ""),
        ("main\n", ("origin",), ""),
    ],
)
@mock.patch("subprocess.run")
def test_get_upstream_branch(run, upstream, remotes, expected):
    run.return_value = _completed(upstream)
    assert git.get_upstream_branch("/repo", *remotes) == expected


@mock.patch("subprocess.run")
def test_get_upstream_branch_on_failure(run):
    run.return_value = _completed("", 128)
    assert git.get_upstream_branch("/repo", "origin") == ""


def test_push_requires_ref():
    with pytest.raises(ValueError):
        git.push("/repo", "origin", "")


def _popen(output=b"", returncode=0):
    proc = mock.MagicMock()
    proc.stdout = io.BytesIO(output)
    proc.wait.return_value = returncode
    return proc


@mock.patch("subprocess.Popen")
def test_push_streams_indented_output(popen, capsys):
    popen.return_value = _popen(b"Everything up-to-date\n")
    git.push("/repo", "origin", "main", "master")
    assert popen.call_args.args[0] == ["git", "push", "--progress", "origin", "main:master"]
    assert capsys.readouterr().out == "  Everything up-to-date\n"


@mock.patch("subprocess.Popen")
def test_clone_runs_in_parent_directory(popen):
    popen.return_value = _popen()
    assert git.clone("https://example.com/repo.git", "/tmp/work/repo") is None
    assert popen.call_args.args[0] == ["git", "clone", "https://example.com/repo.git", "/tmp/work/repo"]
    assert popen.call_args.kwargs["cwd"] == "/tmp/work"


@mock.patch("subprocess.Popen")
def test_streamed_failure_raises(popen):
    popen.return_value = _popen(b"", 1)
    with pytest.raises(git.GitError, match="Command failed"):
        git.push("/repo", "origin", "main")


@mock.patch("subprocess.run")
def test_init_with_main_branch(run):
    run.return_value = _completed("Switched to a new branch 'main'\n")
    result = git.init("/repo", force_main_branch=True)
    assert result == "Switched to a new branch 'main'\n"
    assert [c.args[0] for c in run.call_args_list] == [
        ["git", "init"],
        ["git", "checkout", "-b", "main"],
    ]


@mock.patch("subprocess.run")
def test_init_without_main_branch(run):
    run.return_value = _completed("")
    assert git.init("/repo") is None
    assert run.call_count == 1


@mock.patch("subprocess.run")
def test_add_and_commit(run):
    run.return_value = _completed("")
    assert git.add_and_commit("/repo", ["a.txt", "b.txt"], "Initial commit") is None
    assert [c.args[0] for c in run.call_args_list] == [
        ["git", "add", "a.txt", "b.txt"],
        ["git", "commit", "-m", "Initial commit"],
    ]


@mock.patch("subprocess.run")
def test_add_and_commit_stops_on_failure(run):
    run.return_value = _completed("nothing added", 1)
    with pytest.raises(git.GitError):
        git.add_and_commit("/repo", ["a.txt"], "msg")
    assert run.call_count == 1