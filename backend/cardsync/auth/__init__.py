# cardsync/auth/__init__.py
"""
Authentication modules for cardsync.

This package contains:
- identity.py: Verified access token identity model
- tokens.py: Access token issuing/verification (HS256, fail-closed)
"""
from cardsync.auth.identity import AccessIdentity

__all__ = ["AccessIdentity"]
