"""Run external commands and boil their outcome down to an exit code."""

import logging
import signal
import subprocess
import typing as t

_log = logging.getLogger(__name__)

# Reported whenever the real exit status of a child cannot be determined.
FALLBACK_EXIT_CODE = 127


class Result(t.NamedTuple):
    returncode: int
    output: str = ""
    error: t.Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.error is None


def exit_code(returncode: int) -> int:
    """Map a ``Popen.returncode`` onto a non-negative exit code.

    Children killed by a signal have a negative return code; those are
    reported as :data:`FALLBACK_EXIT_CODE`, with the signal logged.
    """
    if returncode >= 0:
        return returncode
    try:
        name = signal.Signals(-returncode).name
    except ValueError:
        name = f"signal {-returncode}"
    _log.warning("Child terminated by %s, reporting exit status %d", name, FALLBACK_EXIT_CODE)
    return FALLBACK_EXIT_CODE


def _spawn_failed(args: t.Sequence[str], e: OSError) -> Result:
    _log.debug("Cannot execute %r: %s", list(args), e)
    return Result(returncode=FALLBACK_EXIT_CODE, error=f"cannot execute {args[0]}: {e.strerror or e}")


def run_with_output(
    args: t.Sequence[str],
    cwd: t.Optional[str] = None,
    env: t.Optional[t.Mapping[str, str]] = None,
) -> Result:
    """Run ``args`` to completion, capturing stdout and stderr together."""
    try:
        child = subprocess.run(
            args,
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            close_fds=True,
            universal_newlines=True,
            errors="replace",
            check=False,
        )
    except OSError as e:
        return _spawn_failed(args, e)
    return Result(returncode=exit_code(child.returncode), output=child.stdout)


def run(
    args: t.Sequence[str],
    cwd: t.Optional[str] = None,
    env: t.Optional[t.Mapping[str, str]] = None,
) -> Result:
    """Run ``args`` to completion with the caller's stdio attached."""
    try:
        returncode = subprocess.call(args, cwd=cwd, env=env, close_fds=True)
    except OSError as e:
        return _spawn_failed(args, e)
    return Result(returncode=exit_code(returncode))
