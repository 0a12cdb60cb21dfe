"""Pytest configuration for all tests."""

import os

import pytest


@pytest.fixture(autouse=True)
def clean_triage_env(monkeypatch):
    """Remove TRIAGE_* variables so settings only see what a test sets."""
    for name in list(os.environ):
        if name.upper().startswith("TRIAGE_"):
            monkeypatch.delenv(name, raising=False)
