from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from double_ai.config import Config
from double_ai.model.chat import utcnow
from double_ai.model.settings import GlobalSettings, UserSettings
from double_ai.database.db.session import SessionLocal
from double_ai.database.db.models import GlobalSettingsRow, UserSettingsRow

GLOBAL_SETTINGS_ID = 1


class SettingsRepository:
    """
    Settings repository, split global / per-user.

    Key material is stored as ciphertext; this layer never sees plaintext keys.
    Patches passed to the update methods are already encrypted and validated.
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self._session_factory = session_factory or SessionLocal

    # =====================================================
    # Global
    # =====================================================

    def get_global_settings(self) -> GlobalSettings:
        """
        Return the deployment-wide settings.
        Defaults are returned (not persisted) when no row exists yet.
        """
        with self._session_factory() as db:
            row = db.get(GlobalSettingsRow, GLOBAL_SETTINGS_ID)
            if not row:
                return self._default_global()
            return self._row_to_global(row)

    def update_global_settings(self, patch: Dict[str, Any]) -> GlobalSettings:
        with self._session_factory() as db:
            row = db.get(GlobalSettingsRow, GLOBAL_SETTINGS_ID)
            if not row:
                defaults = self._default_global()
                row = GlobalSettingsRow(
                    id=GLOBAL_SETTINGS_ID,
                    global_api_key=defaults.global_api_key,
                    default_system_prompt=defaults.default_system_prompt,
                    model_version=defaults.model_version,
                    allow_user_api_keys=defaults.allow_user_api_keys,
                    maintenance_mode=defaults.maintenance_mode,
                )
                db.add(row)

            for field, value in patch.items():
                setattr(row, field, value)
            row.updated_at = utcnow()

            db.commit()
            db.refresh(row)
            return self._row_to_global(row)

    # =====================================================
    # Per-user
    # =====================================================

    def get_user_settings(self, user_id: str) -> Optional[UserSettings]:
        with self._session_factory() as db:
            row = db.get(UserSettingsRow, user_id)
            if not row:
                return None
            return self._row_to_user(row)

    def update_user_settings(self, user_id: str, patch: Dict[str, Any]) -> UserSettings:
        """Upsert: creates the row with defaults on first write"""
        with self._session_factory() as db:
            row = db.get(UserSettingsRow, user_id)
            if not row:
                defaults = UserSettings(user_id=user_id)
                row = UserSettingsRow(
                    user_id=user_id,
                    theme=defaults.theme,
                    preferred_language=defaults.preferred_language,
                    use_personal_api_key=defaults.use_personal_api_key,
                )
                db.add(row)

            for field, value in patch.items():
                setattr(row, field, value)
            row.updated_at = utcnow()

            db.commit()
            db.refresh(row)
            return self._row_to_user(row)

    # =====================================================
    # Helper Methods
    # =====================================================

    def _default_global(self) -> GlobalSettings:
        return GlobalSettings(
            default_system_prompt=Config.chat.default_system_prompt,
            model_version=Config.llm.default_model,
        )

    def _row_to_global(self, row: GlobalSettingsRow) -> GlobalSettings:
        return GlobalSettings(
            global_api_key=row.global_api_key,
            default_system_prompt=row.default_system_prompt,
            model_version=row.model_version,
            allow_user_api_keys=bool(row.allow_user_api_keys),
            maintenance_mode=bool(row.maintenance_mode),
            updated_at=row.updated_at,
        )

    def _row_to_user(self, row: UserSettingsRow) -> UserSettings:
        return UserSettings(
            user_id=row.user_id,
            theme=row.theme,
            preferred_language=row.preferred_language,
            use_personal_api_key=bool(row.use_personal_api_key),
            personal_api_key=row.personal_api_key,
            temperature=row.temperature,
            system_prompt=row.system_prompt,
            updated_at=row.updated_at,
        )
