"""Unit-test generation: retrieve examples, draft, run and repair Go tests."""
