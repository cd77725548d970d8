"""Encrypt tarballs with GPG and verify them with SHA-256 sidecars."""

__version__ = "1.0.0"
