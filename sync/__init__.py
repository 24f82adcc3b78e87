"""Annotation synchronization engine.

Keeps the reader's bookmarks, highlights, notes and reading-plan progress
consistent between the on-device store and the shared cloud store.
"""
