import logging
import sys

from core.config import config


class Colors:
    """ANSI escape codes used by the console formatter."""

    RESET = "\033[0m"
    BOLD = "\033[1m"

    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BG_RED = "\033[41m"

    GREY = "\033[90m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    MAGENTA = "\033[95m"
    BRIGHT_CYAN = "\033[96m"


LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Loggers that are too chatty at INFO
NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "asyncio", "httpx", "httpcore", "stripe")


class ColorfulFormatter(logging.Formatter):
    """Formatter that colours level, timestamp and source location on a TTY."""

    LEVEL_STYLES = {
        logging.DEBUG: (Colors.BRIGHT_CYAN, "🔍"),
        logging.INFO: (Colors.GREEN, "ℹ️ "),
        logging.WARNING: (Colors.YELLOW, "⚠️ "),
        logging.ERROR: (Colors.RED, "❌"),
        logging.CRITICAL: (Colors.BOLD + Colors.BG_RED + Colors.WHITE, "💥"),
    }

    def __init__(self, fmt: str = None, datefmt: str = None, use_colors: bool = True):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors:
            return super().format(record)

        color, icon = self.LEVEL_STYLES.get(record.levelno, (Colors.WHITE, "•"))
        plain_levelname = record.levelname
        record.levelname = f"{color}{icon}  {plain_levelname}{Colors.RESET}"
        try:
            formatted = super().format(record)
        finally:
            record.levelname = plain_levelname

        timestamp = self.formatTime(record, self.datefmt)
        location = f"{record.filename}:{record.lineno}"
        formatted = formatted.replace(
            timestamp, f"{Colors.GREY}{timestamp}{Colors.RESET}", 1
        )
        return formatted.replace(
            location,
            f"{Colors.CYAN}{record.filename}{Colors.RESET}"
            f"{Colors.GREY}:{Colors.RESET}"
            f"{Colors.MAGENTA}{record.lineno}{Colors.RESET}",
            1,
        )


def _startup_banner() -> str:
    width = 62
    lines = [
        f"{config.APP_NAME} :: enrollment & allocation engine",
        f"environment: {config.APP_ENV}",
        f"log level:   {config.LOG_LEVEL.upper()}",
    ]
    border = "═" * width
    body = "\n".join(f"║  {line:<{width - 3}} ║" for line in lines)
    return (
        f"\n{Colors.BOLD}{Colors.BRIGHT_CYAN}╔{border}╗\n{body}\n╚{border}╝{Colors.RESET}\n"
    )


def setup_logging() -> logging.Logger:
    """
    Configure application logging.

    Default log level is INFO. SQL statements are only logged when
    LOG_LEVEL=DEBUG so member data does not end up in production logs.
    """
    log_level = LOG_LEVELS.get(config.LOG_LEVEL.upper(), logging.INFO)
    use_colors = sys.stdout.isatty()

    formatter = ColorfulFormatter(
        fmt="%(asctime)s │ %(levelname)-8s │ %(filename)s:%(lineno)d │ %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        use_colors=use_colors,
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)

    if use_colors:
        print(_startup_banner())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    sqlalchemy_logger = logging.getLogger("sqlalchemy.engine")
    if log_level <= logging.DEBUG:
        sqlalchemy_logger.setLevel(logging.DEBUG)
        root_logger.info("SQL logging enabled (DEBUG mode)")
    else:
        sqlalchemy_logger.setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)
