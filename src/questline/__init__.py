"""Questline progression engine."""
