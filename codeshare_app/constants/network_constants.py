"""Network configuration constants for the classroom server."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 5000
API_PREFIX: str = "/api"
CHANNEL_PATH: str = "/ws"
