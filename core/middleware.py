from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi import FastAPI, Request

from core.errors import BattleError
from core.logging import get_logger
from schemas.common import error_response, ApiStatus, STATUS_FOR_CODE

log = get_logger("api")


def setup_middleware(app: FastAPI):
    """Setup global exception handlers"""

    # Global exception handler for validation errors
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        log.warning("request_validation_failed", path=request.url.path, errors=str(exc.errors()))
        return JSONResponse(
            status_code=422,
            content=error_response(
                message="Request validation failed",
                status=ApiStatus.VALIDATION_ERROR,
                error_code="VALIDATION_ERROR",
                data={"errors": [
                    {"loc": list(err["loc"]), "msg": err["msg"]} for err in exc.errors()
                ]}
            )
        )

    # Domain errors raised by the services
    @app.exception_handler(BattleError)
    async def battle_error_handler(request: Request, exc: BattleError):
        log.info(
            "request_rejected",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=exc.message,
        )
        status = STATUS_FOR_CODE.get(exc.status_code, ApiStatus.SERVER_ERROR)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_response(
                message=exc.message,
                status=status,
                error_code=type(exc).__name__,
                data=exc.details,
            )
        )
