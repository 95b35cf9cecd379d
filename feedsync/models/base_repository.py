"""Base repository for database operations."""

from feedsync.extensions import db

class BaseRepository:
    """Base repository implementing common database operations."""

    def __init__(self, db_instance=None, model_class=None):
        """Initialize the repository.

        Args:
            db_instance: SQLAlchemy database instance
            model_class: Model class to use for queries
        """
        self.db = db_instance or db
        self.model_class = model_class

    def get_by_id(self, id):
        """Get an entity by primary key.

        Returns:
            Entity instance or None
        """
        if not self.model_class:
            raise NotImplementedError("Model class must be set in derived repository")

        return self.db.session.get(self.model_class, id)
