"""Integration tests against a live PostgreSQL instance."""
