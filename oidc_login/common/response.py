"""
Unified response envelope
"""

from datetime import datetime, timezone
from typing import Any


def error_response(
    message: str = "Error",
    code: int = 400,
    data: Any = None,
) -> dict:
    """Error envelope."""
    return {
        "success": False,
        "code": code,
        "message": message,
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
