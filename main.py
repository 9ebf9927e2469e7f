import json
import logging
from contextlib import asynccontextmanager
from typing import Optional, Type, TypeVar

import requests
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool
from twilio.base.exceptions import TwilioException

from callbacks import parse_stk_callback
from daraja import DarajaClient, provider_error_body
from models import SendOtpRequest, StkPushRequest, VerifyOtpRequest
from otp import OtpService
from settings import Settings

__version__ = "1.0.0"

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _error(status_code: int, error, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, **extra})


BodyModel = TypeVar("BodyModel", bound=BaseModel)


async def read_body(request: Request, model: Type[BodyModel]) -> BodyModel:
    """Parse a JSON object body into `model`.

    Bodies that are not JSON (form posts, no content type) or not a JSON
    object count as empty, so every field keeps its default. Malformed JSON
    and fields of the wrong type raise RequestValidationError.
    """
    if "json" not in request.headers.get("content-type", "").lower():
        return model()

    raw = await request.body()
    if not raw.strip():
        return model()
    try:
        data = json.loads(raw)
    except ValueError:
        raise RequestValidationError(
            [{"type": "json_invalid", "loc": ("body",), "msg": "JSON decode error", "input": {}}]
        )
    if not isinstance(data, dict):
        return model()

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(e.errors())


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application is starting up...")
    yield
    logger.info("Application is shutting down...")


def create_app(
    settings: Settings,
    daraja: Optional[DarajaClient] = None,
    otp: Optional[OtpService] = None,
) -> FastAPI:
    """Build the relay app around an explicit settings object.

    `daraja` and `otp` default to clients built from `settings`; pass
    stand-ins to swap the outbound providers.
    """
    app = FastAPI(
        title="M-Pesa STK Push Relay",
        description="Relays STK Push requests to Daraja, receives payment callbacks and verifies phones by OTP",
        version=__version__,
        docs_url="/api-docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.daraja = daraja or DarajaClient(settings)
    app.state.otp = otp if otp is not None else OtpService.from_settings(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Invalid request body on {request.url.path}: {exc.errors()}")
        return _error(400, "Invalid request body", detail=jsonable_encoder(exc.errors()))

    # Global Exception Handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "An unexpected error occurred",
                "request_method": request.method,
                "request_url": str(request.url)
            }
        )

    @app.post("/stk-push")
    async def stk_push(request: Request):
        """Prompt the customer's phone to authorize a payment"""
        body = await read_body(request, StkPushRequest)
        logger.info("STK Push request received")
        try:
            result = await run_in_threadpool(app.state.daraja.stk_push, body.amount, body.phone)
        except (requests.RequestException, ValueError) as e:
            upstream = provider_error_body(e)
            logger.error(f"STK Push Error: {upstream if upstream is not None else e}")
            return _error(500, upstream if upstream is not None else "Internal Server Error")

        logger.info(f"STK Push API response: {result}")
        content = {"message": "STK Push Initiated"}
        if isinstance(result, dict):
            content.update(result)
        return JSONResponse(status_code=200, content=content)

    @app.post("/callback")
    async def callback(request: Request):
        """Receive the final payment result from Daraja"""
        try:
            callback_data = await request.json()
        except ValueError:
            callback_data = None

        logger.info(f"M-Pesa Callback Received: {json.dumps(callback_data)}")

        result = parse_stk_callback(callback_data)
        if result is None:
            return _error(400, "Invalid callback data")

        if result.succeeded:
            logger.info(
                "Payment Success: "
                f"Phone: {result.phone} "
                f"Amount: {result.amount} "
                f"Receipt: {result.receipt_number} "
                f"CheckoutRequestID: {result.checkout_request_id}"
            )
        else:
            logger.info(f"Payment Failed [{result.result_code}]: {result.result_desc}")

        # Daraja retries delivery on anything but 200
        return JSONResponse(status_code=200, content={"message": "Callback received successfully"})

    @app.post("/send-otp")
    async def send_otp(request: Request):
        body = await read_body(request, SendOtpRequest)
        phone = body.phone
        if not phone:
            return _error(400, "Phone number is required")

        service: Optional[OtpService] = app.state.otp
        if service is None:
            logger.error("OTP Send Error: Twilio Verify is not configured")
            return _error(500, "Failed to send OTP")

        try:
            sid = await run_in_threadpool(service.send, str(phone))
        except (TwilioException, requests.RequestException) as e:
            logger.error(f"OTP Send Error: {e}")
            return _error(500, "Failed to send OTP")

        return {"message": "OTP sent successfully", "sid": sid}

    @app.post("/verify-otp")
    async def verify_otp(request: Request):
        body = await read_body(request, VerifyOtpRequest)
        phone, code = body.phone, body.code
        if not phone or code is None or code == "":
            return _error(400, "Phone number and code are required")

        service: Optional[OtpService] = app.state.otp
        if service is None:
            logger.error("OTP Verify Error: Twilio Verify is not configured")
            return _error(500, "Failed to verify OTP")

        try:
            approved = await run_in_threadpool(service.verify, str(phone), str(code))
        except (TwilioException, requests.RequestException) as e:
            logger.error(f"OTP Verify Error: {e}")
            return _error(500, "Failed to verify OTP")

        if not approved:
            return _error(401, "Invalid OTP code")
        return {"message": "Phone number verified successfully"}

    @app.get("/")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "message": "M-Pesa STK Push relay is running",
            "version": __version__,
            "otp_enabled": app.state.otp is not None,
        }

    return app


settings = Settings.from_env()
configure_logging(settings.log_level)
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
