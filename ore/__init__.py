"""Ore — plugin repository service."""
