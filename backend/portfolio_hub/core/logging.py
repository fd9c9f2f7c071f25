import logging
import re
import sys

# Query parameters, matrix parameters and cookies that carry provider secrets.
_SECRET_PATTERN = re.compile(
    r"(?i)\b(signature|sig|sessionid|jsessionid|api_key|apikey|onetimepassword)=([^&;?\s\"']+)"
)
_QUIET_LOGGERS = ("sqlalchemy", "aiosqlite", "httpx", "httpcore")


def redact(text: str) -> str:
    """Mask signatures, session ids and keys embedded in URLs or headers."""
    return _SECRET_PATTERN.sub(lambda match: f"{match.group(1)}=***", text)


class RedactSecretsFilter(logging.Filter):
    """Rewrite records so signed URLs and session cookies never reach the output."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def setup_logging(level: str = "INFO", provider_level: str | None = None) -> None:
    """Configure logging to output to stdout with secrets redacted.

    ``provider_level`` tunes the adapter and fetcher loggers separately, which is
    how throttling and partial-failure warnings are silenced or expanded.
    """
    root_logger = logging.getLogger()
    if not any(isinstance(f, RedactSecretsFilter) for h in root_logger.handlers for f in h.filters):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s', datefmt='%Y-%m-%d %H:%M:%S')
        )
        handler.addFilter(RedactSecretsFilter())
        root_logger.addHandler(handler)
    root_logger.setLevel(level.upper())

    logging.getLogger("portfolio_hub.providers").setLevel((provider_level or level).upper())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
