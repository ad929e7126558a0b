"""Utility helpers for node-updater."""
