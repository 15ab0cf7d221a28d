"""
Core rules for the marketplace toolkit.

This module is framework-agnostic - it doesn't import psycopg2, httpx,
or any infrastructure concerns. Everything here works on plain mappings
and dataclasses so the rules can be tested without a database.
"""
