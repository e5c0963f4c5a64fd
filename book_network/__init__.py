"""Book Network - book sharing and lending service

This package contains:
- Book registry: listing, flags and covers (books.py)
- Lending ledger: borrow / return / approve (lending.py)
- Feedback ledger: ratings and comments (feedback.py)
- Access control rules shared by the three (access.py)
- SQLite persistence (database.py, repository.py)
- Cache manager (cache_manager.py)
- HTTP API (api.py) and CLI (cli.py)
"""

__version__ = "1.0.0"
