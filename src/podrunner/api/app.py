from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.errors import ErrorKind, RunnerError
from ..logging import setup_logging
from ..runners.base import Runner
from ..runners.kubernetes import KubernetesRunner
from ..settings import load_settings

STATUS_BY_KIND = {
    ErrorKind.TIMEOUT: 504,
    ErrorKind.INFRA: 502,
    ErrorKind.STREAM_CLOSED: 502,
    ErrorKind.CONFIG: 500,
    ErrorKind.REMOTE_FAILURE: 422,
    ErrorKind.NON_ZERO_EXIT: 422,
    ErrorKind.RESULT_UNAVAILABLE: 422,
}


# --------- Schemas ---------
class LaunchReq(BaseModel):
    function: str
    payload: str = "{}"


class LaunchRes(BaseModel):
    result: str


class ErrorRes(BaseModel):
    kind: str
    runner: str
    message: str
    remote_trace: Optional[str] = None
    exit_code: Optional[int] = None


def get_runner(request: Request) -> Runner:
    return request.app.state.runner


def create_app(runner: Optional[Runner] = None) -> FastAPI:
    """Build the app; without an injected runner one is built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if runner is None:
            settings = load_settings()
            setup_logging(settings.log_level)
            owned = KubernetesRunner.from_settings(settings)
        app.state.runner = runner or owned
        try:
            yield
        finally:
            if owned is not None:
                await owned.close()

    app = FastAPI(title="podrunner", lifespan=lifespan)
    if runner is not None:
        app.state.runner = runner

    @app.exception_handler(RunnerError)
    async def runner_error_handler(request: Request, exc: RunnerError):
        return JSONResponse(
            status_code=STATUS_BY_KIND.get(exc.kind, 500),
            content=ErrorRes(**exc.to_dict()).model_dump(),
        )

    # --------- Endpoints ---------

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.post("/launch", response_model=LaunchRes, responses={504: {"model": ErrorRes}, 502: {"model": ErrorRes}})
    async def launch(req: LaunchReq, r: Runner = Depends(get_runner)):
        result = await r.launch(req.function, req.payload)
        return LaunchRes(result=result)

    return app


app = create_app()
