"""Nox sessions for Beat Coach."""

from __future__ import annotations

import sys

import nox

PACKAGE = "beat_coach"
COVERAGE_FLOOR = "80"

nox.options.error_on_missing_interpreters = False
nox.options.sessions = ["lint", "typecheck", "tests"]


def _local(session: nox.Session, *args: str) -> None:
    # Reuses the active interpreter instead of a nox venv.
    session.run(sys.executable, "-m", *args, external=True)


@nox.session
def lint(session: nox.Session) -> None:
    """Check style with ruff; ``-- --fix`` rewrites in place."""
    session.install("ruff")
    if "--fix" in session.posargs:
        session.run("ruff", "check", "--fix", ".")
        session.run("ruff", "format", ".")
        return
    session.run("ruff", "check", ".")
    session.run("ruff", "format", "--check", ".")


@nox.session
def tests(session: nox.Session) -> None:
    """Run pytest without the tests that need a VLC install."""
    session.install("-e", ".[dev]")
    session.run("pytest", "-q", *session.posargs, env={"BEAT_COACH_CI": "1"})


@nox.session
def vlc(session: nox.Session) -> None:
    """Run only the tests that drive a real VLC player."""
    session.install("-e", ".[dev]")
    session.run("pytest", "-q", "-m", "vlc", *session.posargs)


@nox.session
def typecheck(session: nox.Session) -> None:
    session.install("-e", ".[dev]")
    session.run("mypy", f"src/{PACKAGE}")


@nox.session
def coverage(session: nox.Session) -> None:
    session.install("-e", ".[dev]")
    session.run(
        "coverage",
        "run",
        f"--source={PACKAGE}",
        "-m",
        "pytest",
        env={"BEAT_COACH_CI": "1"},
    )
    session.run("coverage", "report", f"--fail-under={COVERAGE_FLOOR}", "-m")


@nox.session(name="dev", venv_backend="none")
def dev(session: nox.Session) -> None:
    """Fast local loop in the active venv: fix lint, typecheck, test."""
    _local(session, "ruff", "check", "--fix", ".")
    _local(session, "ruff", "format", ".")
    _local(session, "mypy", f"src/{PACKAGE}")
    _local(session, "pytest", "-q", *session.posargs)


@nox.session
def build(session: nox.Session) -> None:
    session.install("build")
    session.run("python", "-m", "build")
