from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class LicenseStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    EXPIRED = "expired"
    INACTIVE = "inactive"
    NONE = "none"
    ERROR = "error"

    @classmethod
    def normalize(cls, value: Any, default: "LicenseStatus" = None) -> "LicenseStatus":
        """Map a raw status string onto the enum; unknown values become INVALID."""
        if value is None or value == "":
            return default if default is not None else cls.INVALID
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.INVALID


# Persisted state
class LicenseRecord(BaseModel):
    key: str
    activated_at: int


class LicenseStatusCache(BaseModel):
    status: LicenseStatus
    timestamp: float


# Operation results
class ActivationResult(BaseModel):
    success: bool
    message: str
    status: Optional[LicenseStatus] = None


# Control-layer wire protocol
class LicenseRequest(BaseModel):
    action: str
    plugin: str
    license_key: str
    site_url: str = ""


class LicenseResponse(BaseModel):
    success: bool
    status: Optional[str] = None
    message: str


# Client admin service
class LicenseActivationRequest(BaseModel):
    licenseKey: str


class LicenseStatusResponse(BaseModel):
    hasLicense: bool
    status: LicenseStatus
    licenseKey: Optional[str] = None
    activatedAt: Optional[int] = None
    premiumActive: bool


class UninstallResponse(BaseModel):
    success: bool
    allSites: bool
    message: str


class PremiumCheckResponse(BaseModel):
    premiumActive: bool


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    version: str
    siteId: Optional[str] = None
    testMode: Optional[bool] = False
