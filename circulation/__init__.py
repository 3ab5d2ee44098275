"""Library Circulation - Core Application Package

This package contains the circulation core and its thin outer surfaces:
- Caller-facing facade (library.py)
- Availability ledger, loans, reservations, loss/damage tracking
- Fine calculation (fines.py) and policy settings (settings_provider.py)
- Database layer (database.py)
- HTTP API (api.py) and CLI (cli.py)
"""

from circulation.library import Library
from circulation.outcome import Outcome

__all__ = ["Library", "Outcome"]
