"""Repository for managing settings in the database."""

import logging
from feedsync.models.setting import Setting
from feedsync.extensions import db

logger = logging.getLogger(__name__)

class SqlAlchemySettingRepository:
    """Repository for managing settings using SQLAlchemy."""

    def __init__(self, db_instance=None):
        """Initialize the repository."""
        self.db = db_instance or db

    def get(self, key, default=None):
        """Get a setting value.

        Args:
            key: Setting key
            default: Default value if setting is not found

        Returns:
            The setting value or default
        """
        setting = self.db.session.get(Setting, key)

        if not setting or setting.value is None:
            return default

        return setting.value

    def get_int(self, key, default=None):
        """Get a setting value as an integer, falling back on unparsable values."""
        value = self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Invalid integer setting {key}={value!r}, using {default}")
            return default

    def save_setting(self, key, value):
        """Save a setting by key and value.

        Args:
            key: Setting key
            value: Setting value

        Returns:
            Setting instance
        """
        setting = self.db.session.get(Setting, key)

        if setting:
            setting.value = None if value is None else str(value)
        else:
            setting = Setting(key=key, value=None if value is None else str(value))
            self.db.session.add(setting)

        try:
            self.db.session.commit()
            return setting
        except Exception as e:
            self.db.session.rollback()
            logger.error(f"Error saving setting {key}: {str(e)}")
            raise
