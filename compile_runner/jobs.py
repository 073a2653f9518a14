"""Compile and client-generation jobs.

Both job kinds walk the same states::

    decoding -> sandboxing -> writing -> invoking -> collecting -> cleaning -> done

Once a sandbox exists it is removed on every way out of the job, and every
failure leaves here as a ``JobError``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable
from uuid import uuid4

from pydantic import ValidationError

from compile_runner.artifacts import collect_artifacts, select_artifacts, suffix_filter
from compile_runner.errors import (
    CompilationFailed,
    ExpectedOutputMissing,
    InternalError,
    JobError,
    MalformedRequest,
    NoArtifactsProduced,
    SandboxEnvironmentError,
)
from compile_runner.models import (
    ArtifactFile,
    ClientGenerationJob,
    CompileJob,
    GenerateClientRequest,
    JobResult,
)
from compile_runner.payload import recover_payload
from compile_runner.runner import (
    NonZeroExit,
    ProcessInvocation,
    ProcessOutcome,
    Success,
    TimedOut,
    run_process,
    truncate_output,
)
from compile_runner.sandbox import TEMPLATE_DEPENDENCIES, TEMPLATE_MANIFEST, Sandbox
from compile_runner.settings import Settings

logger = logging.getLogger(__name__)

OUTPUT_DIR_NAME = "out"
ARC32_FILENAME = "contract.arc32.json"
# names the sandbox itself occupies next to the source file
RESERVED_FILENAMES = frozenset({OUTPUT_DIR_NAME, TEMPLATE_MANIFEST, TEMPLATE_DEPENDENCIES})


class JobState(str, Enum):
    decoding = "decoding"
    sandboxing = "sandboxing"
    writing = "writing"
    invoking = "invoking"
    collecting = "collecting"
    cleaning = "cleaning"
    done = "done"


class JobOrchestrator:
    def __init__(self, settings: Settings, sandbox: Sandbox | None = None) -> None:
        self.settings = settings
        self.sandbox = sandbox or Sandbox(settings)

    async def compile(self, body: bytes, content_type: str | None = None) -> JobResult:
        job_id = uuid4().hex
        return await self._run("compile", job_id, self._compile(job_id, body, content_type))

    async def generate_client(self, body: bytes) -> JobResult:
        job_id = uuid4().hex
        return await self._run("generate-client", job_id, self._generate_client(job_id, body))

    async def _run(self, kind: str, job_id: str, work: Awaitable[JobResult]) -> JobResult:
        try:
            result = await work
        except JobError as exc:
            logger.info("%s job %s failed: %s", kind, job_id, exc.kind)
            raise
        except Exception as exc:
            logger.exception("%s job %s failed unexpectedly", kind, job_id)
            raise InternalError("internal error") from exc
        logger.info("%s job %s succeeded: %s", kind, job_id, ", ".join(result.files))
        return result

    async def _compile(
        self, job_id: str, body: bytes, content_type: str | None
    ) -> JobResult:
        self._enter(job_id, JobState.decoding)
        payload = recover_payload(body, content_type, self.settings.default_filename)
        if payload.filename in RESERVED_FILENAMES:
            raise MalformedRequest(f"filename {payload.filename!r} is reserved")
        logger.info(
            "compile job %s: %s (%d chars)",
            job_id,
            payload.filename,
            len(payload.source_text),
        )

        self._enter(job_id, JobState.sandboxing)
        async with self.sandbox.session("puya", seed=True) as work_dir:
            try:
                job = CompileJob(
                    id=job_id,
                    filename=payload.filename,
                    source_text=payload.source_text,
                    work_dir=work_dir,
                    output_dir=work_dir / OUTPUT_DIR_NAME,
                )
                self._enter(job_id, JobState.writing)
                await asyncio.to_thread(_write_compile_inputs, job)

                self._enter(job_id, JobState.invoking)
                invocation = self._compile_invocation(job)
                logs = self._check_outcome(invocation, await run_process(invocation))

                self._enter(job_id, JobState.collecting)
                artifacts = await asyncio.to_thread(collect_artifacts, job.output_dir)
                suffixes = self.settings.artifact_suffixes
                try:
                    files = select_artifacts(
                        artifacts,
                        suffix_filter(suffixes),
                        description=" or ".join(suffixes) or "output",
                    )
                except NoArtifactsProduced as exc:
                    raise NoArtifactsProduced(
                        _failure_message(exc.message, logs), logs=logs
                    ) from None
            finally:
                self._enter(job_id, JobState.cleaning)
        self._enter(job_id, JobState.done)
        return JobResult(job_id=job_id, files=files, logs=logs)

    async def _generate_client(self, job_id: str, body: bytes) -> JobResult:
        self._enter(job_id, JobState.decoding)
        try:
            request = GenerateClientRequest.model_validate_json(body)
        except ValidationError as exc:
            raise MalformedRequest(
                "Invalid request body. Expected JSON with { arc32Json }."
            ) from exc
        if isinstance(request.arc32_json, str):
            content = request.arc32_json
        else:
            content = json.dumps(request.arc32_json, indent=2)

        self._enter(job_id, JobState.sandboxing)
        async with self.sandbox.session("algokit") as work_dir:
            try:
                job = ClientGenerationJob(
                    id=job_id,
                    arc32_content=content,
                    work_dir=work_dir,
                    arc32_path=work_dir / ARC32_FILENAME,
                    client_path=work_dir / f"client.{self.settings.client_extension}",
                )
                self._enter(job_id, JobState.writing)
                await asyncio.to_thread(_write_text, job.arc32_path, job.arc32_content)

                self._enter(job_id, JobState.invoking)
                invocation = self._client_invocation(job)
                logs = self._check_outcome(invocation, await run_process(invocation))

                self._enter(job_id, JobState.collecting)
                try:
                    client = await asyncio.to_thread(_read_expected, job.client_path)
                except ExpectedOutputMissing as exc:
                    raise ExpectedOutputMissing(
                        _failure_message(exc.message, logs), logs=logs
                    ) from None
            finally:
                self._enter(job_id, JobState.cleaning)
        self._enter(job_id, JobState.done)
        return JobResult(
            job_id=job_id,
            files={job.client_path.name: ArtifactFile(encoding="utf8", data=client)},
            logs=logs,
        )

    def _compile_invocation(self, job: CompileJob) -> ProcessInvocation:
        command, *prefix = self.settings.compiler_command
        return ProcessInvocation(
            command=command,
            arguments=(*prefix, str(job.source_path), "--out-dir", str(job.output_dir)),
            environment={"JOB_ID": job.id, "JOB_OUTPUT_DIR": str(job.output_dir)},
            timeout_ms=self.settings.timeout_ms,
            cwd=job.work_dir,
        )

    def _client_invocation(self, job: ClientGenerationJob) -> ProcessInvocation:
        command, *prefix = self.settings.client_generator_command
        return ProcessInvocation(
            command=command,
            arguments=(
                *prefix,
                "generate",
                "client",
                str(job.arc32_path),
                "--output",
                str(job.client_path),
            ),
            environment={"JOB_ID": job.id},
            timeout_ms=self.settings.timeout_ms,
            cwd=job.work_dir,
        )

    def _check_outcome(
        self, invocation: ProcessInvocation, outcome: ProcessOutcome
    ) -> str:
        """Return the truncated process logs, or raise ``CompilationFailed``."""
        limit = self.settings.log_tail_chars
        if isinstance(outcome, Success):
            return truncate_output(_join_logs(outcome.stdout, outcome.stderr), limit)

        if isinstance(outcome, NonZeroExit):
            logs = truncate_output(_join_logs(outcome.stdout, outcome.stderr), limit)
            if self._tolerated(outcome.stderr):
                logger.warning(
                    "%s exited with code %s, stderr only reports a tolerated error",
                    invocation.command,
                    outcome.code,
                )
                return logs
            raise CompilationFailed(
                _failure_message(f"Process exited with code {outcome.code}", logs),
                logs=logs,
            )

        if isinstance(outcome, TimedOut):
            logs = truncate_output(_join_logs(outcome.stdout, outcome.stderr), limit)
            raise CompilationFailed(
                _failure_message(f"Process timed out after {outcome.timeout_ms}ms", logs),
                logs=logs,
            )

        raise CompilationFailed(f"Failed to start {invocation.command}: {outcome.cause}")

    def _tolerated(self, stderr: str) -> bool:
        return any(marker in stderr for marker in self.settings.tolerated_stderr_markers)

    @staticmethod
    def _enter(job_id: str, state: JobState) -> None:
        logger.debug("job %s -> %s", job_id, state.value)


def _write_compile_inputs(job: CompileJob) -> None:
    try:
        job.output_dir.mkdir(parents=True, exist_ok=True)
        job.source_path.write_text(job.source_text, encoding="utf-8")
    except OSError as exc:
        raise SandboxEnvironmentError(f"could not write job inputs: {exc}") from exc


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise SandboxEnvironmentError(f"could not write {path.name}: {exc}") from exc


def _read_expected(path: Path) -> str:
    if not path.is_file():
        raise ExpectedOutputMissing(f"{path.name} file was not generated")
    return path.read_text(encoding="utf-8", errors="replace")


def _join_logs(stdout: str, stderr: str) -> str:
    return "\n".join(part for part in (stdout, stderr) if part)


def _failure_message(head: str, logs: str) -> str:
    if not logs.strip():
        return head
    return f"{head}\n{logs}"
