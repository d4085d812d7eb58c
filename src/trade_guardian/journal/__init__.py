"""Audit journal."""
