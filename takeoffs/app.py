"""
FastAPI application entry point for the takeoff listings service.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from takeoffs.config import get_settings
from takeoffs.errors import TakeoffError
from takeoffs.routes import router


async def takeoff_error_handler(request: Request, exc: TakeoffError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body())


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
    )
    app = FastAPI(title="Takeoff Listings API", version="0.1.0")
    app.add_exception_handler(TakeoffError, takeoff_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
