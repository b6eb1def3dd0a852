"""Sync — projecting registry content into a project's .references/ directory.

This package provides the primitives for:
- Filtering: include/exclude globs relative to a reference root
- Materializing: writing expected files and removing stale ones
- Status: classifying entries as in-sync, stale, missing or unresolved
"""
