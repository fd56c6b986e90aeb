"""
Service layer for the audio cache.

This module contains the cache, locking, eviction and download logic,
independent of the request cycle. These functions are used by:
- The download view + Huey cleanup task (audio/views.py, audio/tasks.py)
- The CLI management commands (management/commands/)
"""
