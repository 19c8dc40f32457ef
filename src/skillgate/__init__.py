"""Acceptance test orchestration for skill-generated CRUD web applications."""
