from db.models.settings import Settings
from sqlalchemy.orm import Session
from typing import Iterable, Optional
import os

SQUARE_REQUIRED_SETTINGS = ["SQUARE_ACCESS_TOKEN"]


class SettingsRepository:
    """Configuration lookup: environment variables first, then the `settings` table."""

    def __init__(self, db: Session):
        self.db = db

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        env_value = os.getenv(key)
        if env_value is not None:
            return env_value

        setting = self.db.query(Settings).filter(Settings.key == key).first()
        if setting is None or setting.value is None:
            return default
        return setting.value

    def missing_settings(self, keys: Iterable[str]) -> list[str]:
        """Keys with no non-empty value anywhere, in the order given."""
        return [key for key in keys if not self.get_setting(key)]
