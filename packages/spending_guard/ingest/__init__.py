"""CSV ingestion into engine :class:`~spending_guard.models.Transaction` records."""
