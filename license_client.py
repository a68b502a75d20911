import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import ValidationError as ModelValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from database import OptionStore, SessionLocal, SqlOptionStore, delete_option_everywhere
from environment import detect_environment, resolve_license_api_url
from errors import TransportError
from models import ActivationResult, LicenseRecord, LicenseStatus, LicenseStatusCache

logger = logging.getLogger(__name__)

LICENSE_OPTION = "datalayer_manager_license"
STATUS_OPTION = "datalayer_manager_license_status"

TEST_LICENSE_KEY = "TEST-LICENSE-KEY-12345"

ERROR_MESSAGES = {
    "expired": "Your license key has expired.",
    "revoked": "Your license key has been revoked.",
    "missing": "Invalid license key.",
    "invalid": "Invalid license key.",
    "site_inactive": "License is not active for this site.",
    "item_name_mismatch": "License key does not match this product.",
    "no_activations_left": "No activations left for this license key.",
}


def mask_key(license_key: str) -> str:
    """Keep only the last four characters, for logs and UI."""
    if len(license_key) <= 4:
        return "*" * len(license_key)
    return "*" * (len(license_key) - 4) + license_key[-4:]


class LicenseClient:
    def __init__(
        self,
        store: OptionStore,
        config=settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        endpoint_filter: Optional[Callable[[], Optional[str]]] = None
    ):
        self.store = store
        self.config = config
        self.transport = transport
        self.clock = clock
        self.endpoint_filter = endpoint_filter
        self._test_mode = False

    # Test mode
    def enable_test_mode(self):
        self._test_mode = True

    def disable_test_mode(self):
        self._test_mode = False

    def is_test_mode(self) -> bool:
        return bool(self.config.LICENSE_TEST_MODE or self._test_mode)

    def get_api_url(self) -> str:
        """
        Resolve the control-layer endpoint for the current environment.
        """
        filtered = self.endpoint_filter() if self.endpoint_filter else None
        return resolve_license_api_url(
            detect_environment(self.config),
            override=self.config.LICENSE_API_URL,
            filtered=filtered
        )

    # Persisted state
    def get_license_record(self) -> Optional[LicenseRecord]:
        raw = self.store.get(LICENSE_OPTION)
        if not raw:
            return None
        try:
            return LicenseRecord.model_validate(raw)
        except ModelValidationError:
            logger.warning("Ignoring malformed license record")
            return None

    def get_license_key(self) -> str:
        record = self.get_license_record()
        return record.key if record else ""

    def _get_cached_status(self) -> Optional[LicenseStatus]:
        """
        Cached status, or None when absent, malformed or older than the TTL.
        """
        raw = self.store.get(STATUS_OPTION)
        if not raw:
            return None

        try:
            cached = LicenseStatusCache.model_validate(raw)
        except ModelValidationError:
            logger.warning("Ignoring malformed license status cache")
            return None

        if self.clock() - cached.timestamp >= self.config.STATUS_CACHE_TTL_SECONDS:
            return None
        return cached.status

    def _cache_status(self, status: LicenseStatus):
        cached = LicenseStatusCache(status=status, timestamp=self.clock())
        self.store.set(STATUS_OPTION, cached.model_dump(mode="json"))

    def _store_license(self, license_key: str):
        record = LicenseRecord(key=license_key, activated_at=int(self.clock()))
        self.store.set(LICENSE_OPTION, record.model_dump(mode="json"))

    def _clear_local_state(self):
        self.store.delete(LICENSE_OPTION)
        self.store.delete(STATUS_OPTION)

    # Remote calls
    async def _post(self, action: str, license_key: str) -> httpx.Response:
        """
        Send one request to the control layer. Raises TransportError.
        """
        api_url = self.get_api_url()
        try:
            async with httpx.AsyncClient(
                timeout=self.config.LICENSE_API_TIMEOUT,
                transport=self.transport
            ) as client:
                return await client.post(
                    api_url,
                    json={
                        "action": action,
                        "plugin": self.config.PLUGIN_ID,
                        "license_key": license_key,
                        "site_url": self.config.SITE_URL
                    },
                    headers={"Content-Type": "application/json"}
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("License %s request to %s failed: %s", action, api_url, e)
            raise TransportError(str(e)) from e

    @staticmethod
    def _json_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _message(data: Dict[str, Any], *names: str, default: str) -> str:
        """
        First non-empty string among the named fields. Accepts the
        {"error": {"message": ...}} shape as well.
        """
        for name in names:
            value = data.get(name)
            if isinstance(value, dict):
                value = value.get("message")
            if isinstance(value, str) and value.strip():
                return value
        return default

    async def _validate_license(self, license_key: str) -> LicenseStatus:
        """
        Live check against the control layer.
        """
        if self.is_test_mode():
            status = LicenseStatus.VALID if license_key == TEST_LICENSE_KEY else LicenseStatus.INVALID
            self._cache_status(status)
            return status

        try:
            response = await self._post("check", license_key)
        except TransportError:
            return self._get_cached_status() or LicenseStatus.NONE

        if not response.is_success:
            logger.warning("License check returned HTTP %s", response.status_code)
            return self._get_cached_status() or LicenseStatus.NONE

        status = LicenseStatus.normalize(self._json_body(response).get("status"))

        # Transient upstream failure, keep the last known answer
        if status is LicenseStatus.ERROR:
            return self._get_cached_status() or LicenseStatus.ERROR

        self._cache_status(status)
        return status

    # Public API
    async def get_status(self, force_check: bool = False) -> LicenseStatus:
        """
        Current license status, served from cache unless stale or forced.
        """
        license_key = self.get_license_key()
        if not license_key:
            return LicenseStatus.NONE

        if not force_check:
            cached = self._get_cached_status()
            if cached is not None:
                return cached

        return await self._validate_license(license_key)

    async def is_valid(self) -> bool:
        return await self.get_status() is LicenseStatus.VALID

    async def activate(self, license_key: str) -> ActivationResult:
        """
        Activate a license key for this site.
        """
        license_key = (license_key or "").strip()

        if not license_key:
            return ActivationResult(success=False, message="License key is required.")

        if self.is_test_mode():
            return self._activate_test_license(license_key)

        try:
            response = await self._post("activate", license_key)
        except TransportError:
            return ActivationResult(
                success=False,
                status=LicenseStatus.ERROR,
                message="Error connecting to license server. Please try again later."
            )

        data = self._json_body(response)

        if not response.is_success:
            return ActivationResult(
                success=False,
                status=LicenseStatus.ERROR,
                message=self._message(data, "message", default="The license server returned an error. Please try again later.")
            )

        if data.get("success") is True:
            status = LicenseStatus.normalize(data.get("status"), default=LicenseStatus.VALID)
            self._store_license(license_key)
            self._cache_status(status)
            logger.info("License %s activated", mask_key(license_key))
            return ActivationResult(
                success=True,
                status=status,
                message=self._message(data, "message", default="License activated successfully!")
            )

        error_message = self._message(data, "message", "error", default="Unknown error occurred.")
        return ActivationResult(
            success=False,
            status=LicenseStatus.normalize(data.get("status")),
            message=ERROR_MESSAGES.get(error_message, error_message)
        )

    def _activate_test_license(self, license_key: str) -> ActivationResult:
        if license_key != TEST_LICENSE_KEY:
            return ActivationResult(
                success=False,
                status=LicenseStatus.INVALID,
                message=f"Invalid test license key. Use: {TEST_LICENSE_KEY}"
            )

        self._store_license(license_key)
        self._cache_status(LicenseStatus.VALID)
        return ActivationResult(
            success=True,
            status=LicenseStatus.VALID,
            message="Test license activated successfully! (Test Mode)"
        )

    async def deactivate(self) -> ActivationResult:
        """
        Deactivate the license. Local state is always cleared.
        """
        license_key = self.get_license_key()

        if not license_key:
            return ActivationResult(success=False, message="No license key found.")

        reached_server = True
        if not self.is_test_mode():
            try:
                await self._post("deactivate", license_key)
            except TransportError:
                reached_server = False

        self._clear_local_state()
        logger.info("License %s deactivated", mask_key(license_key))

        if not reached_server:
            return ActivationResult(
                success=True,
                status=LicenseStatus.NONE,
                message="License deactivated locally. (Could not reach license server.)"
            )

        return ActivationResult(
            success=True,
            status=LicenseStatus.NONE,
            message="License deactivated successfully."
        )

    def purge(self):
        """
        Remove all license data for this site (uninstall).
        """
        self._clear_local_state()


def purge_all_sites(db: Session) -> int:
    """
    Remove license data for every site (network-wide uninstall).
    Returns the number of options deleted.
    """
    removed = 0
    for option in (LICENSE_OPTION, STATUS_OPTION):
        removed += delete_option_everywhere(db, option)
    logger.info("Removed %d license options across all sites", removed)
    return removed


async def is_premium_active(client: Optional[LicenseClient] = None) -> bool:
    """
    The premium gate. Every feature check goes through here.
    """
    if client is not None:
        return await client.is_valid()

    db = SessionLocal()
    try:
        return await LicenseClient(SqlOptionStore(db, settings.SITE_ID)).is_valid()
    except SQLAlchemyError:
        logger.exception("License storage unavailable, premium features disabled")
        return False
    finally:
        db.close()
