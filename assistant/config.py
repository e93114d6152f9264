from pydantic import BaseModel
import os
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Load .env file if it exists (before reading os.getenv)
_env_path = Path(__file__).resolve().parent.parent / ".env"
if _env_path.exists():
    with open(_env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                # Environment wins over .env
                if key not in os.environ:
                    os.environ[key] = value


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _sanitize_ascii(val: str) -> str:
    """Strip non-ASCII characters from credentials (httpx rejects them in headers)."""
    return val.encode('ascii', errors='ignore').decode('ascii').strip()


class Settings(BaseModel):
    # Filesystem
    base_dir: str = os.getenv("ASSISTANT_BASE_DIR", os.getcwd())
    data_dir: str = os.getenv("ASSISTANT_DATA_DIR", str(Path.home() / ".assistant"))
    permissions_path: Optional[str] = os.getenv("ASSISTANT_PERMISSIONS_PATH") or None
    plugins_dir: Optional[str] = os.getenv("ASSISTANT_PLUGINS_DIR") or None

    # Audit
    audit_enabled: bool = _flag("ASSISTANT_AUDIT", "1")
    audit_max_bytes: int = int(os.getenv("ASSISTANT_AUDIT_MAX_BYTES", str(5 * 1024 * 1024)))

    # Model fallback (OpenAI-compatible chat completions)
    openai_api_key: str = _sanitize_ascii(os.getenv("OPENAI_API_KEY", ""))
    openai_base_url: str = _sanitize_ascii(os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"))
    router_model: str = _sanitize_ascii(os.getenv("ASSISTANT_ROUTER_MODEL", "gpt-4o-mini"))
    routing_timeout_s: float = float(os.getenv("ASSISTANT_ROUTING_TIMEOUT", "15"))
    fallback_max_attempts: int = int(os.getenv("ASSISTANT_FALLBACK_ATTEMPTS", "3"))

    # Cache
    cache_ttl_s: float = float(os.getenv("ASSISTANT_CACHE_TTL", "86400"))

    # Tools
    memory_limit: int = int(os.getenv("ASSISTANT_MEMORY_LIMIT", "200"))
    command_timeout_s: float = float(os.getenv("ASSISTANT_COMMAND_TIMEOUT", "30"))
    default_agent: str = os.getenv("ASSISTANT_AGENT", "system")

    # HTTP surface
    http_host: str = os.getenv("ASSISTANT_HTTP_HOST", "127.0.0.1")
    http_port: int = int(os.getenv("ASSISTANT_HTTP_PORT", "8765"))

    def data_path(self, name: str) -> str:
        return os.path.join(self.data_dir, name)

    def masked_key(self) -> str:
        key = self.openai_api_key
        return '***' + key[-4:] if len(key) > 4 else 'EMPTY'


settings = Settings()

logger.debug(f"Config: base_dir={settings.base_dir}, data_dir={settings.data_dir}")
logger.debug(f"Config: router → {settings.openai_base_url}, model={settings.router_model} (key={settings.masked_key()})")
