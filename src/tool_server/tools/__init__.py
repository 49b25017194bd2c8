"""Bundled tool plugins, loaded from this directory by default."""
