import subprocess

import pytest

from slurm_job_history import cli
from slurm_job_history.models import JobState


def test_build_options_defaults_to_current_user(monkeypatch):
    monkeypatch.setattr(cli.getpass, "getuser", lambda: "erin")

    options = cli.build_options(cli.parse_arguments([]))

    assert options.user == "erin"
    assert options.recent_hours == cli.DEFAULT_WINDOW_HOURS
    assert options.format_fields == ()


def test_build_options_all_users_and_filters():
    args = cli.parse_arguments(
        [
            "--all-users",
            "--partition",
            "gpu, debug",
            "--qos",
            "normal",
            "--state",
            "completed,CA",
            "--hours",
            "3",
            "--format",
            "JobIDRaw,State",
        ]
    )

    options = cli.build_options(args)

    assert options.user is None
    assert options.partitions == ("gpu", "debug")
    assert options.qos == ("normal",)
    assert options.states == (JobState.COMPLETED, JobState.CANCELLED)
    assert options.recent_hours == 3
    assert options.format_fields == ("JobIDRaw", "State")


def test_build_options_rejects_unknown_state():
    with pytest.raises(cli.CliError):
        cli.build_options(cli.parse_arguments(["--all-users", "--state", "bogus"]))


@pytest.mark.parametrize("state", ["PENDING", "RUNNING", "R"])
def test_build_options_rejects_non_terminal_state(state):
    with pytest.raises(cli.CliError, match="not a terminal state"):
        cli.build_options(cli.parse_arguments(["--all-users", "--state", state]))


def test_main_dry_run_prints_command(capsys):
    exit_code = cli.main(["--user", "alice", "--hours", "0", "--dry-run"])

    out = capsys.readouterr().out.strip()
    assert exit_code == 0
    assert out.startswith("sacct -n -P -X -S now-1hours -E now --user alice --format ")


def test_main_rejects_bad_timeout(capsys):
    exit_code = cli.main(["--all-users", "--timeout", "0"])

    assert exit_code == 2
    assert "--timeout" in capsys.readouterr().err


def test_main_reports_sacct_failure(monkeypatch, capsys):
    def fake_run(command, **kwargs):
        raise subprocess.CalledProcessError(1, command, stderr="sacct: error: no database\n")

    monkeypatch.setattr(subprocess, "run", fake_run)

    exit_code = cli.main(["--all-users"])

    assert exit_code == 1
    assert "no database" in capsys.readouterr().err


def test_main_prints_job_count(monkeypatch, capsys):
    def fake_run(command, **kwargs):
        return subprocess.CompletedProcess(command, 0, stdout="10|COMPLETED\n11|\n|FAILED\n", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)

    exit_code = cli.main(["--all-users", "--hours", "6", "--format", "JobIDRaw,State"])

    assert exit_code == 0
    assert capsys.readouterr().out.strip() == "Jobs: 2 | Window: last 6 hour(s)"
