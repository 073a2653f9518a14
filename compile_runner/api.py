from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from compile_runner.errors import JobError, PayloadTooLarge
from compile_runner.jobs import JobOrchestrator
from compile_runner.models import ErrorResponse, FilesResponse
from compile_runner.settings import Settings, load_settings

logger = logging.getLogger(__name__)

API_DESCRIPTION = """
Compile Runner - compile Algorand TypeScript contracts with `puya-ts` and
generate typed clients with `algokit`.

## Compile

`POST /compile` with

```json
{"filename": "HelloWorld.algo.ts", "code": "import { Contract } from ..."}
```

The body does not have to be clean JSON: leading noise, double-escaped source
and plain-text bodies are recovered where possible. On success the response
carries every `.arc32.json` / `.arc56.json` file the compiler produced:

```json
{"ok": true, "files": {"HelloWorld.arc32.json": {"encoding": "utf8", "data": "..."}}}
```

## Generate client

`POST /generate-client` with `{"arc32Json": <string or object>}` returns
`{"ok": true, "files": {"client.ts": {"encoding": "utf8", "data": "..."}}}`.

## Errors

Failures return `{"ok": false, "error": "..."}` with status 400 for bad input,
413 for oversized bodies and 500 for compilation or environment failures.
"""


def create_app(settings: Settings | None = None) -> FastAPI:
    runtime_settings = settings or load_settings()
    orchestrator = JobOrchestrator(runtime_settings)

    app = FastAPI(
        title="Compile Runner",
        version="0.1.0",
        description=API_DESCRIPTION,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(
            "%s %s - content-type: %s",
            request.method,
            request.url.path,
            request.headers.get("content-type"),
        )
        return await call_next(request)

    @app.exception_handler(JobError)
    async def job_error_handler(request: Request, exc: JobError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.message).model_dump(),
        )

    async def read_body(request: Request) -> bytes:
        declared = request.headers.get("content-length")
        if declared and declared.isdigit() and int(declared) > runtime_settings.max_body_bytes:
            raise PayloadTooLarge("request body too large")
        body = await request.body()
        if len(body) > runtime_settings.max_body_bytes:
            raise PayloadTooLarge("request body too large")
        return body

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/compile", response_model=FilesResponse)
    async def compile_source(request: Request) -> FilesResponse:
        body = await read_body(request)
        result = await orchestrator.compile(body, request.headers.get("content-type"))
        return FilesResponse(files=result.files)

    @app.post("/generate-client", response_model=FilesResponse)
    async def generate_client(request: Request) -> FilesResponse:
        body = await read_body(request)
        result = await orchestrator.generate_client(body)
        return FilesResponse(files=result.files)

    return app


app = create_app()
