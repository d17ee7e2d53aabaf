"""Run external commands for test setup, teardown and competing flows.

An :class:`Executor` runs each command as a :class:`Job`. Foreground jobs
block until the process exits; background jobs are tracked so they can later
be waited on, interrupted or killed. Output of every job is drained by
dedicated threads while the process runs, so a chatty process can never block
on a full pipe.

After the first failing job, further submissions are skipped unless the
executor ignores errors. :meth:`Executor.err` then reports how many jobs
failed. An executor is not safe for concurrent use.
"""

from __future__ import annotations

import contextlib
import ctypes
import io
import logging
import os
import shlex
import signal
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from typing import IO, Callable, Sequence

from .context import CancelToken

LOGGER = logging.getLogger("ccafct.executor")

SLURP_BUF_SIZE = 4096

# enables tracing for every executor
TRACE = False

PR_SET_PDEATHSIG = 1

_libc = None
if sys.platform.startswith("linux"):
    try:
        _libc = ctypes.CDLL("libc.so.6", use_errno=True)
    except OSError:
        LOGGER.warning("libc not found, jobs will outlive a crashed parent")


def _set_parent_death_signal() -> None:
    """SIGTERM the job when the thread that spawned it exits."""
    _libc.prctl(PR_SET_PDEATHSIG, int(signal.SIGTERM))


class ExecutorError(Exception):
    """Aggregate error for jobs that exited with nonzero status."""


class JobError(Exception):
    def __init__(
        self,
        argv: Sequence[str],
        returncode: int | None,
        message: str,
        stderr: bytes = b"",
    ) -> None:
        super().__init__(message)
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr


@dataclass(frozen=True)
class JobSpec:
    token: CancelToken | None = None
    stdin: bytes | None = None
    background: bool = False
    no_wait: bool = False
    ignore_errors: bool = False
    log: bool = False
    log_stdout: bool = False
    log_stderr: bool = False
    emit: bool = False
    emit_stdout: bool = False
    emit_stderr: bool = False


@dataclass
class Job:
    argv: list[str]
    spec: JobSpec
    process: subprocess.Popen | None = None
    error: BaseException | None = None
    _stdout: io.BytesIO = field(default_factory=io.BytesIO, repr=False)
    _stderr: io.BytesIO = field(default_factory=io.BytesIO, repr=False)
    _threads: list[threading.Thread] = field(default_factory=list, repr=False)
    _interrupted: bool = field(default=False, repr=False)
    _killed: bool = field(default=False, repr=False)
    _token_callback: Callable[[CancelToken], None] | None = field(default=None, repr=False)

    @property
    def command(self) -> str:
        return shlex.join(self.argv)

    @property
    def stdout(self) -> bytes:
        return self._stdout.getvalue()

    @property
    def stderr(self) -> bytes:
        return self._stderr.getvalue()

    @property
    def returncode(self) -> int | None:
        return self.process.returncode if self.process else None

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def start_slurp(self) -> None:
        proc = self.process
        if proc is None:
            raise ExecutorError(f"job '{self.command}' was never started")
        spec = self.spec

        if proc.stdin is not None:
            self._spawn(self._write_stdin, proc.stdin, name="stdin")
        self._spawn(
            self._slurp,
            proc.stderr,
            self._stderr,
            spec.emit or spec.emit_stderr,
            spec.log or spec.log_stderr,
            "stderr",
            name="stderr",
        )
        self._spawn(
            self._slurp,
            proc.stdout,
            self._stdout,
            spec.emit or spec.emit_stdout,
            spec.log or spec.log_stdout,
            "stdout",
            name="stdout",
        )

    def join_output(self) -> None:
        for thread in self._threads:
            thread.join()

    def signal(self, sig: int) -> bool:
        if not self.running:
            return False
        with contextlib.suppress(ProcessLookupError):
            self.process.send_signal(sig)
        return True

    def _spawn(self, target, *args, name: str) -> None:
        thread = threading.Thread(
            target=target, args=args, name=f"job-{name}-{self.argv[0]}", daemon=True
        )
        thread.start()
        self._threads.append(thread)

    def _write_stdin(self, pipe: IO[bytes]) -> None:
        try:
            pipe.write(self.spec.stdin or b"")
        except OSError as exc:
            LOGGER.warning("error writing stdin: '%s'", exc)
        finally:
            with contextlib.suppress(OSError):
                pipe.close()

    def _slurp(self, pipe: IO[bytes], buf: io.BytesIO, emit: bool, log: bool, name: str) -> None:
        try:
            while True:
                chunk = pipe.read1(SLURP_BUF_SIZE)
                if not chunk:
                    break
                buf.write(chunk)
                if emit:
                    sys.stderr.buffer.write(chunk)
                    sys.stderr.buffer.flush()
        except (OSError, ValueError) as exc:
            LOGGER.warning("error reading %s: '%s'", name, exc)
        finally:
            with contextlib.suppress(OSError):
                pipe.close()
        if log and buf.tell() > 0:
            LOGGER.info(
                "%s for '%s'\n%s",
                name,
                self.command,
                buf.getvalue().decode("utf-8", errors="replace"),
            )


class Executor:
    def __init__(
        self,
        trace: bool = False,
        ignore_errors: bool = False,
        no_log_errors: bool = False,
    ) -> None:
        self.trace = trace
        self.ignore_errors = ignore_errors
        self.no_log_errors = no_log_errors
        self.jobs: list[Job] = []
        self.errors = 0
        self._waited = False

    def run(self, cmd: str, *args: str) -> Job | None:
        return self.run_spec(JobSpec(), cmd, *args)

    def runf(self, template: str, *args) -> Job | None:
        return self.run_specf(JobSpec(), template, *args)

    def emit(self, cmd: str, *args: str) -> Job | None:
        return self.run_spec(JobSpec(emit=True), cmd, *args)

    def emitf(self, template: str, *args) -> Job | None:
        return self.run_specf(JobSpec(emit=True), template, *args)

    def run_specf(self, spec: JobSpec, template: str, *args) -> Job | None:
        argv = (template % args if args else template).split(" ")
        return self.run_spec(spec, *argv)

    def run_spec(self, spec: JobSpec, cmd: str, *args: str) -> Job | None:
        return self.run_command([cmd, *args], spec)

    def run_command(self, argv: Sequence[str], spec: JobSpec) -> Job | None:
        if self.errors > 0 and not self.ignore_errors:
            LOGGER.debug("skipping '%s' after earlier errors", shlex.join(argv))
            return None

        job = Job(argv=list(argv), spec=spec)
        self.jobs.append(job)

        if self.trace or TRACE:
            LOGGER.info("%s", job.command)

        try:
            job.process = subprocess.Popen(
                job.argv,
                stdin=subprocess.PIPE if spec.stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=os.environ.copy(),
                preexec_fn=_set_parent_death_signal if _libc is not None else None,
            )
        except OSError as exc:
            self._on_error(job, exc)
            return job

        job.start_slurp()
        if spec.token is not None:
            # a cancelled or expired token kills the process
            job._token_callback = spec.token.add_callback(lambda _token: self._kill_job(job))

        if spec.background:
            return job

        job.join_output()
        job.process.wait()
        self._release(job)
        self._check_exit(job)
        return job

    def wait(self) -> None:
        if self._waited:
            return
        self._waited = True

        for job in self.jobs:
            if not job.spec.background or job.spec.no_wait or job.process is None:
                continue
            job.join_output()
            job.process.wait()
            self._release(job)
            self._check_exit(job)

    def interrupt(self) -> None:
        for job in self._background():
            if job._interrupted:
                continue
            job._interrupted = True
            job.signal(signal.SIGINT)

    def kill(self) -> None:
        for job in self._background():
            self._kill_job(job)

    def err(self) -> ExecutorError | None:
        if self.errors > 0:
            return ExecutorError(f"{self.errors} jobs with nonzero exit status")
        return None

    def _background(self) -> list[Job]:
        return [job for job in self.jobs if job.spec.background and job.process is not None]

    def _kill_job(self, job: Job) -> None:
        if job._killed:
            return
        job._killed = True
        job.signal(signal.SIGKILL)
        self._release(job)

    def _release(self, job: Job) -> None:
        if job._token_callback is not None and job.spec.token is not None:
            job.spec.token.remove_callback(job._token_callback)
            job._token_callback = None

    def _check_exit(self, job: Job) -> None:
        code = job.returncode
        if code:
            error = JobError(job.argv, code, f"exit status {code}", stderr=job.stderr)
            self._on_error(job, error)

    def _on_error(self, job: Job, exc: BaseException) -> None:
        if not job.spec.ignore_errors:
            job.error = exc
            self.errors += 1
        if not self.no_log_errors:
            LOGGER.error("'%s' failed, %s", job.command, exc)
            if job.stderr:
                LOGGER.error("stderr was: %s", job.stderr.decode("utf-8", errors="replace"))


__all__ = [
    "Executor",
    "ExecutorError",
    "Job",
    "JobError",
    "JobSpec",
]
