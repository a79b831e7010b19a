import os
from pathlib import Path
from typing import Any, Dict

import yaml
from dotenv import load_dotenv

load_dotenv()

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "default.yml"


class Settings:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Settings, cls).__new__(cls)
            cls._instance._load()
        return cls._instance

    def _load(self):
        # Cargar configuración por defecto de YAML
        path = Path(os.getenv("VIATICOS_CONFIG", str(_DEFAULT_CONFIG_PATH)))
        if path.exists():
            with path.open("r", encoding="utf-8") as f:
                self._config = yaml.safe_load(f) or {}
        else:
            self._config = {}
        self._config.setdefault("logging", {})
        self._config.setdefault("ledger", {})
        self._config.setdefault("store", {})
        self._config.setdefault("reconciliation", {})
        self._config.setdefault("accounts", {})

        # Sobrescribir con variables de entorno
        self._override_with_env()

    def _override_with_env(self):
        # Environment
        if os.getenv("ENVIRONMENT"):
            self._config["environment"] = os.getenv("ENVIRONMENT")

        # Logging
        if os.getenv("LOG_LEVEL"):
            self._config["logging"]["level"] = os.getenv("LOG_LEVEL")
        if os.getenv("LOG_FORMAT"):
            self._config["logging"]["format"] = os.getenv("LOG_FORMAT")

        # Store
        if os.getenv("VIATICOS_DB_PATH"):
            self._config["store"]["path"] = os.getenv("VIATICOS_DB_PATH")

        # Ledger
        if os.getenv("VIATICOS_SPLIT_TOLERANCE"):
            self._config["ledger"]["split_tolerance"] = os.getenv("VIATICOS_SPLIT_TOLERANCE")
        if os.getenv("VIATICOS_REQUIRE_PROJECT"):
            self._config["ledger"]["require_project"] = (
                os.getenv("VIATICOS_REQUIRE_PROJECT").lower() == "true"
            )

        # Reconciliation
        if os.getenv("VIATICOS_RECONCILIATION_TOLERANCE"):
            self._config["reconciliation"]["amount_tolerance"] = os.getenv(
                "VIATICOS_RECONCILIATION_TOLERANCE"
            )

        # Accounts
        if os.getenv("VIATICOS_ADMIN_EMAILS"):
            self._config["accounts"]["admin_emails"] = [
                e.strip() for e in os.getenv("VIATICOS_ADMIN_EMAILS").split(",") if e.strip()
            ]

    def reload(self) -> None:
        self._load()

    def get(self, key: str, default: Any = None) -> Any:
        keys = key.split(".")
        value: Any = self._config
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    @property
    def config(self) -> Dict[str, Any]:
        return self._config


settings = Settings()
