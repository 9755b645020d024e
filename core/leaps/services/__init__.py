"""Integrations with the database, Kajabi, and outbound e-mail."""
