"""
License control layer.

Sits between the DataLayer Manager plugins and Lemon Squeezy: receives
check/activate/deactivate requests, validates them against the product map,
calls the upstream provider and answers with {success, status, message}.

Run with: uvicorn control_layer:app
"""

import json
import logging
from typing import Any, Dict
from urllib.parse import parse_qsl

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import ControlLayerSettings, control_settings
from errors import BusinessError, ServerError, TransportError, ValidationError
from models import LicenseRequest, LicenseResponse, LicenseStatus
from providers import LemonSqueezyProvider, LicenseProvider

logger = logging.getLogger(__name__)

ALLOWED_ACTIONS = ("check", "activate", "deactivate")

UPSTREAM_STATUS_MAP = {
    "active": LicenseStatus.VALID,
    "inactive": LicenseStatus.INVALID,
    "expired": LicenseStatus.EXPIRED,
}

app = FastAPI(
    title="License Control Layer",
    description="Validates DataLayer Manager license keys against Lemon Squeezy",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["POST"],
    allow_headers=["Content-Type"],
)


def get_control_settings() -> ControlLayerSettings:
    return control_settings


def get_provider(config: ControlLayerSettings = Depends(get_control_settings)) -> LicenseProvider:
    return LemonSqueezyProvider(
        api_key=config.LEMON_SQUEEZY_API_KEY,
        api_url=config.LEMON_SQUEEZY_API_URL,
        timeout=config.UPSTREAM_TIMEOUT
    )


def send_response(success: bool, data: Dict[str, Any] = None, code: int = 200) -> JSONResponse:
    return JSONResponse(status_code=code, content={"success": success, **(data or {})})


async def read_payload(request: Request) -> Dict[str, Any]:
    """
    Decode the request body as JSON, falling back to form encoding.
    """
    body = await request.body()

    try:
        data = json.loads(body) if body else None
    except ValueError:
        data = None

    if isinstance(data, dict) and data:
        return data

    return dict(parse_qsl(body.decode("utf-8", errors="replace")))


def _text(data: Dict[str, Any], name: str) -> str:
    value = data.get(name)
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value).strip()
    return ""


def parse_license_request(data: Dict[str, Any], config: ControlLayerSettings) -> LicenseRequest:
    action = _text(data, "action")
    plugin = _text(data, "plugin")
    license_key = _text(data, "license_key")

    if action not in ALLOWED_ACTIONS:
        raise ValidationError("Invalid action. Use: check, activate, or deactivate.")

    if not plugin or plugin not in config.PRODUCT_MAP:
        raise ValidationError("Invalid or unknown plugin.")

    if not license_key:
        raise ValidationError("License key is required.")

    if not config.PRODUCT_MAP[plugin]:
        raise ServerError("Plugin configuration error. Please contact support.")

    return LicenseRequest(
        action=action,
        plugin=plugin,
        license_key=license_key,
        site_url=_text(data, "site_url")
    )


async def validate_with_provider(provider: LicenseProvider, license_key: str, variant_id: str) -> LicenseResponse:
    try:
        upstream_status = await provider.validate(license_key, variant_id)
    except TransportError as e:
        return LicenseResponse(
            success=False,
            status=LicenseStatus.ERROR.value,
            message=e.message or "Error connecting to license server."
        )
    except BusinessError as e:
        return LicenseResponse(
            success=False,
            status=LicenseStatus.INVALID.value,
            message=e.message or "License validation failed."
        )

    status = UPSTREAM_STATUS_MAP.get(upstream_status, LicenseStatus.INVALID)
    valid = status is LicenseStatus.VALID
    return LicenseResponse(
        success=valid,
        status=status.value,
        message="License is valid." if valid else "License is not valid."
    )


async def process_license_request(
    license_request: LicenseRequest,
    provider: LicenseProvider,
    config: ControlLayerSettings
) -> LicenseResponse:
    variant_id = config.PRODUCT_MAP[license_request.plugin]

    if license_request.action == "check":
        return await validate_with_provider(provider, license_request.license_key, variant_id)

    if license_request.action == "activate":
        # No per-site activation upstream: a key that validates is accepted
        validation = await validate_with_provider(provider, license_request.license_key, variant_id)
        if not validation.success:
            return validation
        logger.info("License activated for %s", license_request.site_url or "unknown site")
        return LicenseResponse(
            success=True,
            status=LicenseStatus.VALID.value,
            message="License activated successfully."
        )

    # Deactivation is enforced by the plugin removing its local license
    return LicenseResponse(
        success=True,
        status=LicenseStatus.INACTIVE.value,
        message="License deactivated successfully."
    )


@app.api_route("/", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def handle_license_request(
    request: Request,
    config: ControlLayerSettings = Depends(get_control_settings),
    provider: LicenseProvider = Depends(get_provider)
):
    """
    Single entry point for check, activate and deactivate.
    """
    if request.method != "POST":
        return send_response(False, {"message": "Method not allowed. Use POST."}, 405)

    try:
        data = await read_payload(request)
        license_request = parse_license_request(data, config)
        result = await process_license_request(license_request, provider, config)
    except (ValidationError, ServerError) as e:
        return send_response(False, {"message": e.message}, e.status_code)
    except Exception:
        logger.exception("License API error")
        return send_response(False, {
            "message": "An error occurred while processing your request.",
            "status": LicenseStatus.ERROR.value,
        }, 500)

    return send_response(result.success, {"status": result.status, "message": result.message})


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=control_settings.LOG_LEVEL)
    uvicorn.run(app, host="0.0.0.0", port=8001)
