"""Bookshelf - Core Application Package

This package contains the core application modules including:
- API endpoints (api.py)
- Server actions (actions.py)
- Client-side list state (store.py, filters.py)
- Persistence layer (library.py, database.py)
- Data models (book.py, records.py)
"""

__version__ = "1.0.0"
