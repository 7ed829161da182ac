"""Cipher and template helpers for call arguments."""
