import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "hcp-proxy")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = os.environ.get("PORT", "")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

DEFAULT_PROXY_PREFIX = "/api/hcp"
DEFAULT_HCP_API_BASE = "https://api.housecallpro.com"
DEFAULT_PORT = 8080
DEFAULT_MAX_BODY_SIZE = 10 * 1024 * 1024  # 10MB
DEFAULT_PROXY_TIMEOUT = 60.0

HEALTHCHECK_PATH = "/healthz"

# Request headers the proxy consumes itself
API_KEY_HEADER = "x-hcp-api-key"
AUTH_MODE_HEADER = "x-hcp-auth-mode"
API_BASE_HEADER = "x-hcp-api-base"
