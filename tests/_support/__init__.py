"""Shared test models and schema helpers."""
