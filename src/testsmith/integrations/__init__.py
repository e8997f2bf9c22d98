"""Integrations with third-party runtimes."""
