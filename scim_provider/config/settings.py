"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_SCIM_BASE_URL = "http://127.0.0.1:5000/scim/v2"
DEFAULT_MAX_PAYLOAD_BYTES = 65536  # 64 KB
DEFAULT_LIST_MAX_RESULTS = 200

SECRETS_DIR = Path("/run/secrets")


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = SECRETS_DIR / secret_name

    # Priority 1: Read from /run/secrets
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    # Priority 2: Fallback to environment variable
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            print(f"[settings] ✓ Loaded {env_var} from environment (fallback)")
            return secret_value

    return None


def _get_int(var_name: str, default: int) -> int:
    """Read a positive integer setting, failing loudly on garbage."""
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable {var_name} must be an integer, got {raw!r}.")
    if value <= 0:
        raise RuntimeError(f"Environment variable {var_name} must be positive, got {value}.")
    return value


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool = False

    # SCIM
    scim_base_url: str = DEFAULT_SCIM_BASE_URL
    scim_static_token: str = ""  # empty disables bearer auth
    max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES
    list_max_results: int = DEFAULT_LIST_MAX_RESULTS

    # Logging
    log_level: str = "INFO"

    @property
    def auth_enabled(self) -> bool:
        return bool(self.scim_static_token)


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    scim_base_url = os.environ.get("SCIM_BASE_URL", "").strip() or DEFAULT_SCIM_BASE_URL

    # SCIM static token (optional; Docker secret wins over the environment)
    scim_static_token = _load_secret_from_file("scim_static_token", "SCIM_STATIC_TOKEN") or ""
    if scim_static_token:
        print(f"[settings] ✓ SCIM bearer authentication enabled (token length: {len(scim_static_token)})")

    log_level = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    max_payload_bytes = _get_int("SCIM_MAX_PAYLOAD_BYTES", DEFAULT_MAX_PAYLOAD_BYTES)
    list_max_results = _get_int("SCIM_LIST_MAX_RESULTS", DEFAULT_LIST_MAX_RESULTS)

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; base_url={scim_base_url}; log_level={log_level}")

    if demo_mode and not scim_static_token:
        print("[settings] WARNING: SCIM API is unauthenticated. Do not expose this server.")

    return AppConfig(
        demo_mode=demo_mode,
        scim_base_url=scim_base_url,
        scim_static_token=scim_static_token,
        max_payload_bytes=max_payload_bytes,
        list_max_results=list_max_results,
        log_level=log_level,
    )
