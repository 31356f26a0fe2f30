"""Tests for the Telegram batch bot."""
