import logging
import json
import sys
from decimal import Decimal
from typing import Dict, Any, Mapping, Optional
from infra.settings import settings

# keys whose values never reach the log stream as-is
SENSITIVE_KEYS = {"password", "token", "api_key", "secret", "authorization", "credential"}
MASKED_KEYS = {"email", "tax_id", "card_last4"}


def _mask(value: Any) -> str:
    s = str(value)
    if "@" in s:
        local, _, domain = s.partition("@")
        return f"{local[:1]}***@{domain}"
    return f"***{s[-4:]}" if len(s) > 4 else "***"


def sanitize_extra(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Redacta credenciales y enmascara datos personales (email, RUT/NIT) en extra_data."""
    out: Dict[str, Any] = {}
    for k, v in data.items():
        kl = str(k).lower()
        if any(sk in kl for sk in SENSITIVE_KEYS):
            out[k] = "***REDACTED***"
        elif kl in MASKED_KEYS and v:
            out[k] = _mask(v)
        elif isinstance(v, Decimal):
            out[k] = str(v)
        elif isinstance(v, Mapping):
            out[k] = sanitize_extra(v)
        else:
            out[k] = v
    return out


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        # Add extra fields if they exist
        if hasattr(record, "extra_data"):
            log_entry.update(sanitize_extra(getattr(record, "extra_data")))
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(level: Optional[str] = None) -> None:
    """Un solo handler en stderr; stdout queda para la salida de los comandos."""
    log_level_name = str(level or settings.get("logging.level", "INFO")).upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = settings.get("logging.format", "json")

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=[handler], force=True)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
