import logging
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slowapi.errors import RateLimitExceeded

from jobboard.core.config import settings, require_jwt_secret
from jobboard.core.rate_limit import limiter
from jobboard.routes.interview_links import router as interview_links_router
from jobboard.routes.interviews import router as interviews_router
from jobboard.services.applications import ApplicationNotFound
from jobboard.services.calendar import (
    AuthenticationExpired,
    CalendarWriteFailed,
    CredentialExpired,
    CredentialMissing,
    CredentialRefreshFailed,
)
from jobboard.services.interview_responses import TokenAlreadyTerminal, TokenExpired, TokenNotFound
from jobboard.services.interview_scheduler import (
    InterviewNotFound,
    InvalidInterviewState,
    PersistenceError,
    ScheduleValidationError,
)
from jobboard.services.tokens import EntropySourceUnavailable

logger = logging.getLogger(__name__)

require_jwt_secret()

app = FastAPI(title="Job Board Interviews")
logger.info(
    "Startup config: EMAIL_ENABLED=%s provider=%s TOKEN_TTL_DAYS=%s RATE_LIMITING=%s",
    settings.EMAIL_ENABLED,
    (settings.EMAIL_PROVIDER or "resend"),
    settings.INTERVIEW_TOKEN_TTL_DAYS,
    settings.ENABLE_RATE_LIMITING,
)

_ERROR_CODE_BY_STATUS: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    502: "BAD_GATEWAY",
}

INVALID_LINK_MESSAGE = "This link is invalid or has expired."
CALENDAR_AUTH_MESSAGE = "Calendar access expired. Please reconnect your calendar in settings."


def _error_code(status_code: int) -> str:
    return _ERROR_CODE_BY_STATUS.get(int(status_code), "HTTP_ERROR")


def _error(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    payload: dict = {"error": code, "message": message}
    if details:
        payload["details"] = details
    return JSONResponse(status_code=status_code, content=payload)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):  # noqa: ARG001
    detail = exc.detail
    message: str
    details: dict | None = None
    code = _error_code(exc.status_code)

    if isinstance(detail, str):
        message = detail
    elif isinstance(detail, dict):
        msg = detail.get("message")
        message = msg if isinstance(msg, str) and msg else "Request failed"
        det = detail.get("details")
        details = det if isinstance(det, dict) else None
        err = detail.get("error")
        if isinstance(err, str) and err:
            code = err
    else:
        message = str(detail) if detail is not None else "Request failed"

    return _error(exc.status_code, code, message, details)


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):  # noqa: ARG001
    return JSONResponse(
        status_code=422,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Invalid request payload",
            "details": {"errors": jsonable_encoder(exc.errors())},
        },
    )


# ----------------------------------------------------------------------
# Interview scheduling
# ----------------------------------------------------------------------
@app.exception_handler(ScheduleValidationError)
def schedule_validation_handler(request: Request, exc: ScheduleValidationError):  # noqa: ARG001
    return _error(422, "VALIDATION_ERROR", str(exc))


@app.exception_handler(ApplicationNotFound)
@app.exception_handler(InterviewNotFound)
def not_found_handler(request: Request, exc: Exception):  # noqa: ARG001
    return _error(404, "NOT_FOUND", str(exc))


@app.exception_handler(InvalidInterviewState)
def invalid_state_handler(request: Request, exc: InvalidInterviewState):  # noqa: ARG001
    return _error(409, "CONFLICT", str(exc))


@app.exception_handler(CredentialMissing)
def calendar_not_connected_handler(request: Request, exc: CredentialMissing):
    logger.info("Calendar not connected for %s: %s", request.url.path, exc)
    return _error(400, "CALENDAR_NOT_CONNECTED", "Calendar not connected. Please connect your calendar in settings.")


@app.exception_handler(CredentialExpired)
@app.exception_handler(CredentialRefreshFailed)
@app.exception_handler(AuthenticationExpired)
def calendar_auth_handler(request: Request, exc: Exception):
    logger.warning("Calendar authentication failed for %s: %s", request.url.path, exc)
    return _error(401, "CALENDAR_AUTH_EXPIRED", CALENDAR_AUTH_MESSAGE)


@app.exception_handler(CalendarWriteFailed)
def calendar_write_handler(request: Request, exc: CalendarWriteFailed):  # noqa: ARG001
    return _error(502, "CALENDAR_WRITE_FAILED", "Could not create the calendar event. Please try again.")


@app.exception_handler(PersistenceError)
@app.exception_handler(EntropySourceUnavailable)
def internal_error_handler(request: Request, exc: Exception):  # noqa: ARG001
    return _error(500, "INTERNAL_ERROR", "Something went wrong while scheduling the interview.")


# ----------------------------------------------------------------------
# Candidate links
# ----------------------------------------------------------------------
@app.exception_handler(TokenNotFound)
@app.exception_handler(TokenExpired)
def invalid_link_handler(request: Request, exc: Exception):  # noqa: ARG001
    # Unknown and expired links are indistinguishable to the caller.
    return _error(404, "INVALID_LINK", INVALID_LINK_MESSAGE)


@app.exception_handler(TokenAlreadyTerminal)
def terminal_link_handler(request: Request, exc: TokenAlreadyTerminal):  # noqa: ARG001
    return _error(409, "CONFLICT", f"This interview has already been {exc.status}.")


app.state.limiter = limiter
# Provide our standard error shape for rate limits, instead of slowapi's default.
app.add_exception_handler(
    RateLimitExceeded,
    lambda request, exc: JSONResponse(  # noqa: ARG005
        status_code=429,
        content={"error": "RATE_LIMITED", "message": "Too many requests"},
    ),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(interviews_router)
app.include_router(interview_links_router)


@app.get("/health")
def health_check():
    return {"status": "ok"}
