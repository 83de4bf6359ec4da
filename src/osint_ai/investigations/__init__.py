"""Minimal investigation and findings store consumed by the AI job pipeline."""
