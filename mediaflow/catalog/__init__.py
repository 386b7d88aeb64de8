"""Relational catalog: models, sessions and read queries."""
