"""Persistence layer: async SQLAlchemy engine, models, repositories and the SQL Sync Store."""
