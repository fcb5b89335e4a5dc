"""API schemas and domain dataclasses."""
