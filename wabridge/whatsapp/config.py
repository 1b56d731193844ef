"""
Configuration and logging setup for the WhatsApp bridge.

Provides centralized configuration with environment variable support
and sensible defaults for the session, relay and HTTP settings.
"""

import os
import sys
import logging
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# =============================================================================
# Logging Configuration
# =============================================================================

class LogColors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"

    BRIGHT_BLACK = "\033[90m"
    BRIGHT_RED = "\033[91m"
    BRIGHT_GREEN = "\033[92m"
    BRIGHT_BLUE = "\033[94m"
    BRIGHT_MAGENTA = "\033[95m"
    BRIGHT_CYAN = "\033[96m"
    BRIGHT_WHITE = "\033[97m"


class ColoredFormatter(logging.Formatter):
    """
    One line per record: time, level, component tag, message.

    The component is the first segment after "wabridge." in the logger
    name, so "wabridge.lifecycle" and any child of it share a style.
    """

    COMPONENT_STYLES = {
        "server": (LogColors.BRIGHT_CYAN, "🚀"),
        "lifecycle": (LogColors.GREEN, "🔗"),
        "backoff": (LogColors.YELLOW, "⏳"),
        "pairing": (LogColors.MAGENTA, "📱"),
        "transport": (LogColors.BRIGHT_BLACK, "📦"),
        "router": (LogColors.CYAN, "📡"),
        "credentials": (LogColors.BRIGHT_MAGENTA, "🔑"),
        "relay": (LogColors.BLUE, "📨"),
        "routes": (LogColors.BRIGHT_BLUE, "🌐"),
    }
    DEFAULT_STYLE = (LogColors.WHITE, "•")

    LEVEL_STYLES = {
        logging.DEBUG: (LogColors.BRIGHT_BLACK, "DBG"),
        logging.INFO: (LogColors.GREEN, "INF"),
        logging.WARNING: (LogColors.YELLOW, "WRN"),
        logging.ERROR: (LogColors.RED, "ERR"),
        logging.CRITICAL: (LogColors.BRIGHT_RED + LogColors.BOLD, "CRT"),
    }

    def __init__(self, use_colors: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_colors = use_colors and sys.stdout.isatty()

    @staticmethod
    def component_of(name: str) -> str:
        parts = name.split(".")
        if parts[0] != "wabridge":
            return parts[0]
        return parts[1] if len(parts) > 1 else "server"

    def format(self, record: logging.LogRecord) -> str:
        component = self.component_of(record.name)
        color, icon = self.COMPONENT_STYLES.get(component, self.DEFAULT_STYLE)
        level_color, level_label = self.LEVEL_STYLES.get(record.levelno, (LogColors.WHITE, "???"))
        timestamp = self.formatTime(record, self.datefmt)
        tag = component.upper()

        if self.use_colors:
            line = (
                f"{LogColors.DIM}{timestamp}{LogColors.RESET} "
                f"{level_color}{level_label}{LogColors.RESET} "
                f"{icon} {color}{tag:11}{LogColors.RESET} "
                f"{LogColors.BRIGHT_WHITE}{record.getMessage()}{LogColors.RESET}"
            )
        else:
            line = f"{timestamp} {level_label} {tag:11} {record.getMessage()}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: int | str = logging.INFO,
    use_colors: bool = True
) -> logging.Logger:
    """
    Install the colored console handler and return the "wabridge" logger.

    Args:
        level: Logging level (int or name such as "DEBUG")
        use_colors: Whether to use colored output on a TTY
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))
    console_handler.setLevel(level)

    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    root.setLevel(level)
    root.addHandler(console_handler)

    bridge_logger = logging.getLogger("wabridge")
    bridge_logger.setLevel(level)

    # Third-party chatter stays at WARNING unless something breaks
    for noisy in ("httpx", "httpcore", "websockets", "asyncio", "uvicorn"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    uvicorn_error = logging.getLogger("uvicorn.error")
    uvicorn_error.handlers = [console_handler]

    return bridge_logger


def print_startup_banner(host: str, port: int) -> None:
    """Print the startup banner."""
    C = LogColors
    banner = f"""
{C.BRIGHT_GREEN}  ╦ ╦╔═╗  ╔╗ ╦═╗╦╔╦╗╔═╗╔═╗
  ║║║╠═╣  ╠╩╗╠╦╝║ ║║║ ╦║╣
  ╚╩╝╩ ╩  ╚═╝╩╚═╩═╩╝╚═╝╚═╝
{C.RESET}
  {C.GREEN}▸ Status:{C.WHITE}  http://{host}:{port}/
  {C.MAGENTA}▸ QR:{C.WHITE}      http://{host}:{port}/qr
  {C.BLUE}▸ Send:{C.WHITE}    POST http://{host}:{port}/sendText
  {C.YELLOW}▸ Reset:{C.WHITE}   POST http://{host}:{port}/reset
{C.RESET}"""
    print(banner)


# Initialize default logger
logger = setup_logging(os.getenv("LOG_LEVEL", "INFO"))


# =============================================================================
# Server Configuration
# =============================================================================

@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create config from environment variables."""
        return cls(
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            log_level=os.getenv("LOG_LEVEL", "INFO")
        )


def _parse_browser(value: str) -> tuple:
    parts = [p.strip() for p in value.split(",") if p.strip()]
    return tuple(parts) if parts else ("Educare API", "Chrome", "1.0")


@dataclass
class WhatsAppConfig:
    """Session and reconnection configuration."""
    gateway_url: str = "ws://127.0.0.1:8080/session"
    auth_dir: str = "auth_info"
    browser: tuple = ("Educare API", "Chrome", "1.0")

    # Reconnection policy (delays in seconds)
    max_reconnect_attempts: int = 5
    reconnect_base_delay: float = 2.0
    reconnect_max_delay: float = 60.0
    reconnect_max_jitter: float = 2.0

    # Corrupted-session detection
    auth_reject_threshold: int = 3
    auth_rejected_status: int = 500

    # Timeouts (in seconds)
    reset_restart_delay: float = 3.0
    send_timeout: float = 30.0
    open_timeout: float = 20.0
    qr_ttl: float = 60.0

    @classmethod
    def from_env(cls) -> "WhatsAppConfig":
        """Create config from environment variables."""
        return cls(
            gateway_url=os.getenv("WA_GATEWAY_URL", "ws://127.0.0.1:8080/session"),
            auth_dir=os.getenv("WA_AUTH_DIR", "auth_info"),
            browser=_parse_browser(os.getenv("WA_BROWSER", "Educare API,Chrome,1.0")),
            max_reconnect_attempts=int(os.getenv("WA_MAX_RECONNECT_ATTEMPTS", "5")),
            reconnect_base_delay=float(os.getenv("WA_RECONNECT_BASE_DELAY", "2.0")),
            reconnect_max_delay=float(os.getenv("WA_RECONNECT_MAX_DELAY", "60.0")),
            reconnect_max_jitter=float(os.getenv("WA_RECONNECT_MAX_JITTER", "2.0")),
            auth_reject_threshold=int(os.getenv("WA_AUTH_REJECT_THRESHOLD", "3")),
            auth_rejected_status=int(os.getenv("WA_AUTH_REJECTED_STATUS", "500")),
            reset_restart_delay=float(os.getenv("WA_RESET_RESTART_DELAY", "3.0")),
            send_timeout=float(os.getenv("WA_SEND_TIMEOUT", "30.0")),
            open_timeout=float(os.getenv("WA_OPEN_TIMEOUT", "20.0")),
            qr_ttl=float(os.getenv("WA_QR_TTL", "60.0"))
        )


@dataclass
class RelayConfig:
    """Inbound-message webhook relay configuration."""
    webhook_url: str | None = None
    timeout: float = 10.0
    queue_size: int = 1000

    @classmethod
    def from_env(cls) -> "RelayConfig":
        """Create config from environment variables."""
        return cls(
            webhook_url=os.getenv("N8N_WEBHOOK_URL") or None,
            timeout=float(os.getenv("N8N_WEBHOOK_TIMEOUT", "10.0")),
            queue_size=int(os.getenv("N8N_RELAY_QUEUE_SIZE", "1000"))
        )


@dataclass
class PairingPageConfig:
    """QR page rendering configuration."""
    refresh_seconds: int = 15

    @classmethod
    def from_env(cls) -> "PairingPageConfig":
        """Create config from environment variables."""
        return cls(refresh_seconds=int(os.getenv("QR_REFRESH_SECONDS", "15")))


# =============================================================================
# Composite Configuration
# =============================================================================

@dataclass
class Config:
    """Complete application configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    whatsapp: WhatsAppConfig = field(default_factory=WhatsAppConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    pairing_page: PairingPageConfig = field(default_factory=PairingPageConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Create complete config from environment."""
        return cls(
            server=ServerConfig.from_env(),
            whatsapp=WhatsAppConfig.from_env(),
            relay=RelayConfig.from_env(),
            pairing_page=PairingPageConfig.from_env()
        )


# =============================================================================
# Constants
# =============================================================================

class DisconnectReason:
    """Status codes reported when the messaging network closes a session."""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    TIMED_OUT = 408
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503

    # Gateway socket close codes carry GATEWAY_CODE_BASE + status code
    GATEWAY_CODE_BASE = 4000


class FrameType:
    """Gateway envelope types."""
    # Outbound
    HELLO = "hello"
    SEND = "send"

    # Inbound
    QR = "qr"
    OPEN = "open"
    CLOSE = "close"
    CREDS_UPDATE = "creds.update"
    MESSAGES_UPSERT = "messages.upsert"
    ACK = "ack"
