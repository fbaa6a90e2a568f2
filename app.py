import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import LOG_LEVEL
from errors import PhotoCritiqueError, ValidationError
from service import PhotoCritiqueService, build_service

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_service(request: Request) -> PhotoCritiqueService:
    return request.app.state.service


def extract_token_from_header(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def get_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    return extract_token_from_header(authorization)


def _device_info(request: Request) -> str:
    return request.headers.get("user-agent", "")


# ---------------- Accounts ----------------

@router.post("/register")
def register(
    payload: dict,
    request: Request,
    service: PhotoCritiqueService = Depends(get_service),
):
    """
    Create an account and log it in straight away.

    Payload:
        {"username": "...", "password": "..."}
    """
    token, user = service.register(
        payload.get("username"), payload.get("password"), _device_info(request)
    )
    return JSONResponse({"success": True, "token": token, "user": user})


@router.post("/login")
def login(
    payload: dict,
    request: Request,
    service: PhotoCritiqueService = Depends(get_service),
):
    """
    Log in, ending any session the account has on another device.
    """
    token, user = service.login(
        payload.get("username"), payload.get("password"), _device_info(request)
    )
    return JSONResponse({"success": True, "token": token, "user": user})


@router.post("/logout")
def logout(
    token: Optional[str] = Depends(get_token),
    service: PhotoCritiqueService = Depends(get_service),
):
    service.logout(token)
    return JSONResponse({"success": True})


@router.get("/verify")
def verify(
    token: Optional[str] = Depends(get_token),
    service: PhotoCritiqueService = Depends(get_service),
):
    return JSONResponse({"success": True, "user": service.verify(token)})


@router.get("/user")
def get_user(
    token: Optional[str] = Depends(get_token),
    service: PhotoCritiqueService = Depends(get_service),
):
    return JSONResponse({"success": True, "user": service.get_user(token)})


@router.put("/user")
def update_user(
    payload: dict,
    token: Optional[str] = Depends(get_token),
    service: PhotoCritiqueService = Depends(get_service),
):
    """Replace nickname, avatar and email; missing fields become empty."""
    return JSONResponse({"success": True, "user": service.update_user(token, payload)})


# ---------------- History ----------------

@router.get("/history")
def list_history(
    token: Optional[str] = Depends(get_token),
    service: PhotoCritiqueService = Depends(get_service),
):
    records = service.list_history(token)
    return JSONResponse({"success": True, "records": [r.to_public() for r in records]})


@router.post("/history")
def add_history(
    payload: dict,
    token: Optional[str] = Depends(get_token),
    service: PhotoCritiqueService = Depends(get_service),
):
    """
    Store one analysis.

    Payload:
        {
            "imageData": "data:image/jpeg;base64,...",
            "analysisImage": "data:image/png;base64,...",
            "result": {"composition": {...}, "lighting": "...", ...}
        }
    """
    record = service.add_history(
        token,
        payload.get("imageData"),
        payload.get("analysisImage"),
        payload.get("result"),
    )
    return JSONResponse({"success": True, "record": record.to_public()})


# Registered before /history/{record_id} so "cleanup" is not taken for an id.
@router.post("/history/cleanup")
def cleanup_history(
    token: Optional[str] = Depends(get_token),
    service: PhotoCritiqueService = Depends(get_service),
):
    return JSONResponse({"success": True, "deleted": service.cleanup_history(token)})


@router.get("/history/{record_id}")
def get_history(
    record_id: str,
    token: Optional[str] = Depends(get_token),
    service: PhotoCritiqueService = Depends(get_service),
):
    record = service.get_history(token, record_id)
    return JSONResponse({"success": True, "record": record.to_public()})


@router.delete("/history/{record_id}")
def delete_history(
    record_id: str,
    token: Optional[str] = Depends(get_token),
    service: PhotoCritiqueService = Depends(get_service),
):
    service.delete_history(token, record_id)
    return JSONResponse({"success": True})


# ---------------- Errors ----------------

def _error_body(exc: PhotoCritiqueError) -> dict:
    return {"success": False, "error": exc.message, "code": exc.code}


async def handle_app_error(request: Request, exc: PhotoCritiqueError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(_error_body(exc), status_code=exc.status_code)


async def handle_request_validation(request: Request, exc: RequestValidationError):
    return JSONResponse(_error_body(ValidationError("Request body must be a JSON object.")), status_code=400)


async def handle_unexpected(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        {"success": False, "error": "Internal server error.", "code": "INTERNAL_ERROR"},
        status_code=500,
    )


def create_app(service: Optional[PhotoCritiqueService] = None) -> FastAPI:
    """
    Build the HTTP app around ``service`` (by default the one selected by
    configuration).
    """
    app = FastAPI(title="Photo Critique API")
    app.state.service = service or build_service()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PhotoCritiqueError, handle_app_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
    app.include_router(router)

    @app.get("/health")
    def health():
        return {"status": "ok", "mode": app.state.service.mode}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3000)
