from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class CompileRequest(BaseModel):
    code: str
    filename: str | None = None


class GenerateClientRequest(BaseModel):
    arc32_json: str | dict[str, Any] = Field(alias="arc32Json")

    @field_validator("arc32_json")
    @classmethod
    def _not_empty(cls, value: str | dict[str, Any]) -> str | dict[str, Any]:
        if isinstance(value, str) and not value.strip():
            raise ValueError("arc32Json must not be empty")
        return value


class RecoveredPayload(BaseModel):
    filename: str
    source_text: str


class ArtifactFile(BaseModel):
    encoding: Literal["utf8", "base64"]
    data: str


class CompileJob(BaseModel):
    id: str
    filename: str
    source_text: str
    work_dir: Path
    output_dir: Path

    @property
    def source_path(self) -> Path:
        return self.work_dir / self.filename


class ClientGenerationJob(BaseModel):
    id: str
    arc32_content: str
    work_dir: Path
    arc32_path: Path
    client_path: Path


class JobResult(BaseModel):
    job_id: str
    files: dict[str, ArtifactFile] = Field(default_factory=dict)
    logs: str = ""


class FilesResponse(BaseModel):
    ok: Literal[True] = True
    files: dict[str, ArtifactFile]


class ErrorResponse(BaseModel):
    ok: Literal[False] = False
    error: str
