# FILE: clinic_billing/api/exception_handlers.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from clinic_billing.api.response import err
from clinic_billing.core.errors import BillingError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request,
                                    exc: BillingError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s -> %s: %s", request.method, request.url.path,
                         exc.code, exc.msg)
            details = None
        else:
            logger.info("%s %s -> %s: %s", request.method, request.url.path,
                        exc.code, exc.msg)
            details = exc.extra
        return err(msg=exc.client_msg,
                   status_code=exc.status_code,
                   code=exc.code,
                   details=details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
            request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # exc.detail can be str/dict/list
        msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return err(msg=msg, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
            request: Request, exc: RequestValidationError) -> JSONResponse:
        return err(msg="Validation error",
                   status_code=422,
                   code="REQUEST_INVALID",
                   details=[{
                       "loc": list(e.get("loc") or []),
                       "msg": e.get("msg"),
                       "type": e.get("type"),
                   } for e in exc.errors()])

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request,
                                          exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s %s", request.method,
                         request.url.path)
        return err(msg="Internal server error", status_code=500)
