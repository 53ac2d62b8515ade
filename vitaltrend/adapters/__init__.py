"""Collaborator implementations for storage and patient lookup."""
