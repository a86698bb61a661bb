"""Operator tools

Marks `authmigrate.tools` as a proper package so `python -m
authmigrate.tools.legacy_migration` works from a checkout and an install.
"""
