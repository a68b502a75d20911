import logging
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from config import settings
from database import SessionLocal, SqlOptionStore, get_db, init_db
from license_client import LicenseClient, is_premium_active, mask_key, purge_all_sites
from models import (
    ActivationResult,
    HealthCheckResponse,
    LicenseActivationRequest,
    LicenseStatus,
    LicenseStatusResponse,
    PremiumCheckResponse,
    UninstallResponse
)

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


async def refresh_license_status():
    """
    Keep the status cache warm so page loads never wait on the network.
    Only goes remote once the cached status has expired.
    """
    db = SessionLocal()
    try:
        client = LicenseClient(SqlOptionStore(db, settings.SITE_ID))
        status = await client.get_status()
        logger.info("License status refreshed: %s", status.value)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(level=settings.LOG_LEVEL)
    init_db()

    if settings.STATUS_REFRESH_INTERVAL_HOURS > 0 and not scheduler.running:
        scheduler.add_job(
            refresh_license_status,
            'interval',
            hours=settings.STATUS_REFRESH_INTERVAL_HOURS,
            id='license_status_refresh',
            replace_existing=True
        )
        scheduler.start()

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)


app = FastAPI(
    title="DataLayer Manager License Service",
    description="License activation and premium gating for DataLayer Manager",
    version="1.0.0",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_license_client(db: Session = Depends(get_db)) -> LicenseClient:
    return LicenseClient(SqlOptionStore(db, settings.SITE_ID))


async def require_premium(client: LicenseClient = Depends(get_license_client)):
    """
    Dependency for routes that need an active premium license.
    """
    if not await is_premium_active(client):
        raise HTTPException(status_code=403, detail="A valid DataLayer Manager license is required.")


# API Endpoints
@app.post("/api/license/activate", response_model=ActivationResult)
async def activate_license(
    request: LicenseActivationRequest,
    client: LicenseClient = Depends(get_license_client)
):
    """
    Activate a license key for this site.

    On success the key is stored and the status cache is primed,
    so the premium gate opens without another round trip.
    """
    result = await client.activate(request.licenseKey)

    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)

    return result


@app.post("/api/license/deactivate", response_model=ActivationResult)
async def deactivate_license(client: LicenseClient = Depends(get_license_client)):
    """
    Deactivate the license. Local license data is removed even if the
    license server cannot be reached.
    """
    result = await client.deactivate()

    if not result.success:
        raise HTTPException(status_code=400, detail=result.message)

    return result


@app.get("/api/license/status", response_model=LicenseStatusResponse)
async def get_license_status(force: bool = False, client: LicenseClient = Depends(get_license_client)):
    """
    Get current license status. Pass force=true to bypass the cache.
    """
    status = await client.get_status(force_check=force)
    record = client.get_license_record()

    return {
        "hasLicense": record is not None,
        "status": status,
        "licenseKey": mask_key(record.key) if record else None,
        "activatedAt": record.activated_at if record else None,
        "premiumActive": status is LicenseStatus.VALID
    }


@app.post("/api/license/uninstall", response_model=UninstallResponse)
async def uninstall(
    all_sites: bool = False,
    client: LicenseClient = Depends(get_license_client),
    db: Session = Depends(get_db)
):
    """
    Remove stored license data. Pass all_sites=true for a network-wide
    uninstall; otherwise only this site's options are deleted.
    """
    if all_sites:
        removed = purge_all_sites(db)
        return {"success": True, "allSites": True, "message": f"Removed {removed} license options."}

    client.purge()
    return {"success": True, "allSites": False, "message": "License data removed for this site."}


@app.get("/api/license/premium", response_model=PremiumCheckResponse)
async def check_premium(client: LicenseClient = Depends(get_license_client)):
    return {"premiumActive": await is_premium_active(client)}


@app.get("/health", response_model=HealthCheckResponse)
async def health_check(client: LicenseClient = Depends(get_license_client)):
    return {
        "status": "healthy",
        "service": "license-client",
        "version": "1.0.0",
        "siteId": settings.SITE_ID,
        "testMode": client.is_test_mode()
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
