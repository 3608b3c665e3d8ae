"""Tests for the form engine, dialogs and prompt_toolkit application."""
