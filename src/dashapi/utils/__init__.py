"""Shared utilities for dashapi."""
