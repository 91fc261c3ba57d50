"""Dependency and module resolution for assembly builds."""
