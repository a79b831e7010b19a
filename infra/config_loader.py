from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from infra.logging_config import get_logger
from infra.settings import settings

logger = get_logger(__name__)


# =========================
# MODELOS DE CONFIGURACIÓN
# =========================


class LedgerConfig(BaseModel):
    """
    Reglas de captura de rendiciones.

    split_tolerance: diferencia máxima aceptada entre el total declarado y la suma
    de las filas de una distribución.
    """

    split_tolerance: Decimal = Field(default=Decimal("1"), ge=0)
    require_project: bool = False
    require_category: bool = False
    currency: str = "COP"


class StoreConfig(BaseModel):
    path: str = "data/viaticos.db"


class ReconciliationConfig(BaseModel):
    amount_tolerance: Decimal = Field(default=Decimal("10"), ge=0)


class AccountsConfig(BaseModel):
    admin_emails: List[str] = Field(default_factory=list)


class AppConfig(BaseModel):
    """Config global validada."""

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)
    accounts: AccountsConfig = Field(default_factory=AccountsConfig)


# =========================
# LOADER
# =========================

_APP_CONFIG: Optional[AppConfig] = None


def _read_raw_yaml(path: Path) -> Dict[str, Any]:
    """Lee YAML de forma segura. Si truena, regresa dict vacío."""
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                logger.error(
                    "Config YAML root is not a mapping, falling back to defaults",
                    extra={"extra_data": {"config_path": str(path)}},
                )
                return {}
            return data
    except FileNotFoundError:
        logger.warning(
            "Config file not found, using defaults",
            extra={"extra_data": {"config_path": str(path)}},
        )
        return {}
    except (OSError, yaml.YAMLError) as exc:
        logger.error(
            "Error reading config file, using defaults",
            extra={"extra_data": {"config_path": str(path), "error": str(exc)}},
        )
        return {}


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def load_config(path: Optional[Path] = None) -> AppConfig:
    """
    Carga la configuración y la valida con Pydantic.

    - Sin path → settings (default.yml + variables de entorno).
    - Si está mal formado → usa defaults.
    - Cachea en memoria para no leer disco cada vez.
    """
    global _APP_CONFIG

    if _APP_CONFIG is not None and path is None:
        return _APP_CONFIG

    if path is None:
        raw = settings.config
        source = "settings"
    else:
        raw = _read_raw_yaml(Path(path))
        source = str(path)

    try:
        app_config = AppConfig(
            ledger=LedgerConfig(**_section(raw, "ledger")),
            store=StoreConfig(**_section(raw, "store")),
            reconciliation=ReconciliationConfig(**_section(raw, "reconciliation")),
            accounts=AccountsConfig(**_section(raw, "accounts")),
        )
    except ValidationError as exc:
        logger.error(
            "Invalid config, using defaults",
            extra={"extra_data": {"config_source": source, "error": str(exc)}},
        )
        app_config = AppConfig()

    if path is None:
        _APP_CONFIG = app_config
    logger.debug("Config loaded", extra={"extra_data": {"config_source": source}})
    return app_config


def get_app_config() -> AppConfig:
    """Atajo para obtener la config global."""
    return load_config()


def reset_config_cache() -> None:
    global _APP_CONFIG
    _APP_CONFIG = None
