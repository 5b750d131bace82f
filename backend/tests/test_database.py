"""
Standalone script database access.
"""
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from database import get_db_context


@pytest.mark.asyncio
async def test_db_context_pings_and_closes():
    db = MagicMock()
    db.command = AsyncMock(return_value={"ok": 1})
    client = MagicMock()
    client.__getitem__.return_value = db

    with patch("database.AsyncIOMotorClient", return_value=client) as client_cls:
        async with get_db_context("mongodb://db.internal:27017", "contracts") as handle:
            assert handle is db
            client.close.assert_not_called()

    client_cls.assert_called_once_with("mongodb://db.internal:27017", tz_aware=True)
    client.__getitem__.assert_called_once_with("contracts")
    db.command.assert_awaited_once_with("ping")
    client.close.assert_called_once()


@pytest.mark.asyncio
async def test_db_context_closes_on_failed_ping():
    db = MagicMock()
    db.command = AsyncMock(side_effect=ConnectionError("unreachable"))
    client = MagicMock()
    client.__getitem__.return_value = db

    with patch("database.AsyncIOMotorClient", return_value=client):
        with pytest.raises(ConnectionError):
            async with get_db_context("mongodb://db.internal:27017", "contracts"):
                pass

    client.close.assert_called_once()
