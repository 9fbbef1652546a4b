from __future__ import annotations

from typing import Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from marketplace.database import engine as default_engine


def check_database_health(engine: Optional[Engine] = None) -> Dict[str, str]:
    """Attempt a lightweight DB query to ensure connectivity."""
    try:
        with (engine or default_engine).connect() as connection:
            connection.execute(text("SELECT 1"))
        return {"status": "UP"}
    except SQLAlchemyError as exc:
        # Connection strings may carry credentials; report the error class only
        return {"status": "DOWN", "detail": exc.__class__.__name__}
