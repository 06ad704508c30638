import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "proxyhub")
PROXY_CONFIG_FILE = os.environ.get("PROXY_CONFIG_FILE", "")
PROXY_BASE_PATH = os.environ.get("PROXY_BASE_PATH", "").rstrip("/")
PROXY_TIMEOUT = int(os.environ.get("PROXY_TIMEOUT", "300"))  # 5 minutes default
PROXY_MAX_CONNECTIONS = int(os.environ.get("PROXY_MAX_CONNECTIONS", "100"))
PROXY_MAX_KEEPALIVE = int(os.environ.get("PROXY_MAX_KEEPALIVE", "20"))

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

# Header values masked before they reach the logs
SENSITIVE_HEADERS = [
    h.strip().lower()
    for h in os.getenv(
        "PROXY_SENSITIVE_HEADERS",
        "authorization,proxy-authorization,cookie,set-cookie",
    ).split(",")
    if h.strip()
]
