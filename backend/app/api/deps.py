"""Request dependencies shared by the v1 routers."""

from __future__ import annotations

from fastapi import Request
from starlette.requests import HTTPConnection

from backend.app.runtime import AlertRuntime


def get_runtime(request: Request) -> AlertRuntime:
    return runtime_from(request)


def runtime_from(connection: HTTPConnection) -> AlertRuntime:
    runtime = getattr(connection.app.state, "runtime", None)
    if runtime is None:
        raise RuntimeError("Alert runtime has not been configured on the application state.")
    return runtime
