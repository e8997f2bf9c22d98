"""testsmith - generate, run and repair Go unit tests with an AI agent."""

__version__ = "0.1.0"
