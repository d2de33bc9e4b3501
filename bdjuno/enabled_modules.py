"""The module recording which indexer modules are enabled."""

from __future__ import annotations

from typing import Any, Mapping

MODULE_NAME = "modules"


class EnabledModulesModule:
    """Stores the list of modules enabled inside the chain configuration."""

    def __init__(self, chain_config: Any, db: Any) -> None:
        self.chain_config = chain_config
        self.db = db

    def name(self) -> str:
        return MODULE_NAME

    def run_additional_operations(self) -> None:
        """Store the enabled modules inside the database."""
        if isinstance(self.chain_config, Mapping):
            modules = self.chain_config.get("modules") or []
        else:
            modules = getattr(self.chain_config, "modules", None) or []
        self.db.insert_enable_modules(list(modules))