"""Database models, engine/session handling and migrations."""
