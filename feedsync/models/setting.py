"""Model for application settings."""

from feedsync.extensions import db
from feedsync.utils.time_utils import utcnow

class Setting(db.Model):
    """Key/value settings such as pull watermarks and the stored credential."""

    __tablename__ = 'settings'

    key = db.Column(db.String(255), primary_key=True)
    value = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        """Return string representation."""
        return f'<Setting {self.key}>'
