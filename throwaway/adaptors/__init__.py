"""Adaptors for cloud SDKs."""
