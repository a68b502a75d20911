import platform
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

LOCAL_LICENSE_API_URL = "http://scriptsandpixels.local/license-api/"
PRODUCTION_LICENSE_API_URL = "https://scriptsandpixels.studio/license-api/"

LOCAL_HOSTNAMES = ("localhost", "127.0.0.1")
LOCAL_SUFFIXES = (".local", ".test", ".dev")
LOCAL_PREFIXES = ("192.168.", "10.0.")


@dataclass(frozen=True)
class EnvironmentInfo:
    hostname: str = ""
    local_mode: Optional[bool] = None
    environment_type: Optional[str] = None
    debug: bool = False


def hostname_looks_local(hostname: str) -> bool:
    """
    Match a hostname against the known local/dev indicators.
    """
    host = (hostname or "").strip().lower()
    if not host:
        return False

    # Drop a port, if any
    if host.count(":") == 1:
        host = host.split(":", 1)[0]

    if any(local in host for local in LOCAL_HOSTNAMES):
        return True
    if host.endswith(LOCAL_SUFFIXES):
        return True
    return host.startswith(LOCAL_PREFIXES)


def is_local_environment(environment: EnvironmentInfo) -> bool:
    """
    Decide whether we run in a local/development environment.

    First match wins: explicit local-mode flag, environment type,
    debug flag plus hostname, then the hostname alone.
    """
    if environment.local_mode is not None:
        return environment.local_mode

    env_type = (environment.environment_type or "").strip().lower()
    if env_type in ("local", "development"):
        return True
    if env_type == "production":
        return False

    looks_local = hostname_looks_local(environment.hostname)
    if environment.debug and looks_local:
        return True

    return looks_local


def resolve_license_api_url(
    environment: EnvironmentInfo,
    override: Optional[str] = None,
    filtered: Optional[str] = None
) -> str:
    """
    Resolve the control-layer endpoint: explicit override, then a filter
    value, then auto-detection.
    """
    if override:
        return override

    if filtered:
        return filtered

    if is_local_environment(environment):
        return LOCAL_LICENSE_API_URL
    return PRODUCTION_LICENSE_API_URL


def get_site_hostname(site_url: str) -> str:
    """Hostname of the site URL, or this machine's node name."""
    hostname = urlsplit(site_url or "").hostname
    if hostname:
        return hostname
    return platform.node()


def detect_environment(config) -> EnvironmentInfo:
    """
    Collect environment flags from settings. Evaluated on every call.
    """
    return EnvironmentInfo(
        hostname=get_site_hostname(config.SITE_URL),
        local_mode=config.LICENSE_LOCAL_MODE,
        environment_type=config.ENVIRONMENT_TYPE,
        debug=config.DEBUG
    )
