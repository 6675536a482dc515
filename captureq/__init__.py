"""captureq - capture enrichment and task intelligence backend"""

from __future__ import annotations

__version__ = "1.0.0"
