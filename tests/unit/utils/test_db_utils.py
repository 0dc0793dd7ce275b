import asyncio
import json

from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from helpdesk_chat.utils.db_utils import (
    ConnectionPoolExhausted,
    acquire_connection,
    check_pool_health,
    create_database_pool,
    graceful_pool_close,
    transaction,
    with_retry,
)


def _pool_with_connection(conn: AsyncMock) -> MagicMock:
    pool = MagicMock()
    ctx = AsyncMock()
    ctx.__aenter__.return_value = conn
    pool.acquire.return_value = ctx
    return pool


@pytest.mark.asyncio
async def test_create_pool_configures_connections() -> None:
    mock_pool = AsyncMock(spec=asyncpg.Pool)

    with patch("asyncpg.create_pool", new_callable=AsyncMock) as mock_create:
        mock_create.return_value = mock_pool

        pool = await create_database_pool("postgres://dsn", min_size=1, max_size=4, command_timeout=2.5)

        assert pool == mock_pool
        kwargs = mock_create.call_args.kwargs
        assert kwargs["min_size"] == 1
        assert kwargs["max_size"] == 4

        mock_conn = AsyncMock()
        await kwargs["init"](mock_conn)

    statements = [c.args[0] for c in mock_conn.execute.call_args_list]
    assert statements == ["SET statement_timeout = '2500'", "SET lock_timeout = '2500'"]
    codecs = {c.args[0]: c.kwargs for c in mock_conn.set_type_codec.call_args_list}
    assert set(codecs) == {"json", "jsonb"}
    assert codecs["jsonb"]["encoder"]({"a": 1}) == json.dumps({"a": 1})
    assert codecs["jsonb"]["decoder"]('{"a": 1}') == {"a": 1}


@pytest.mark.asyncio
async def test_create_pool_timeout() -> None:
    with (
        patch("asyncpg.create_pool", side_effect=asyncio.TimeoutError),
        pytest.raises(ConnectionPoolExhausted, match="timed out"),
    ):
        await create_database_pool("postgres://dsn", connection_timeout=0.1)


@pytest.mark.asyncio
async def test_create_pool_failure() -> None:
    with (
        patch("asyncpg.create_pool", side_effect=OSError("connection refused")),
        pytest.raises(ConnectionPoolExhausted, match="connection refused"),
    ):
        await create_database_pool("postgres://dsn")


@pytest.mark.asyncio
async def test_acquire_connection_timeout() -> None:
    mock_pool = MagicMock()
    mock_pool.acquire.side_effect = asyncio.TimeoutError

    with pytest.raises(ConnectionPoolExhausted, match="Could not acquire"):
        async with acquire_connection(mock_pool, timeout=1.0):
            pass


@pytest.mark.asyncio
async def test_transaction_uses_isolation() -> None:
    mock_conn = AsyncMock()
    mock_tx_ctx = AsyncMock()
    # conn.transaction() is not async; it returns the context manager
    mock_conn.transaction = MagicMock(return_value=mock_tx_ctx)
    mock_pool = _pool_with_connection(mock_conn)

    async with transaction(mock_pool, isolation="serializable") as conn:
        assert conn == mock_conn

    mock_conn.transaction.assert_called_once_with(isolation="serializable")
    mock_tx_ctx.__aexit__.assert_called_once()


@pytest.mark.asyncio
async def test_with_retry_recovers() -> None:
    mock_func = AsyncMock(side_effect=[asyncpg.PostgresConnectionError("reset"), "saved"])

    @with_retry(max_attempts=3, base_delay=0.01)
    async def save() -> str:
        return await mock_func()  # type: ignore[no-any-return]

    with patch("helpdesk_chat.utils.db_utils.asyncio.sleep", new_callable=AsyncMock):
        assert await save() == "saved"
    assert mock_func.call_count == 2


@pytest.mark.asyncio
async def test_with_retry_exhausted() -> None:
    mock_func = AsyncMock(side_effect=asyncpg.InterfaceError("closed"))

    @with_retry(max_attempts=2, base_delay=0.01)
    async def save() -> None:
        await mock_func()

    with (
        patch("helpdesk_chat.utils.db_utils.asyncio.sleep", new_callable=AsyncMock),
        pytest.raises(asyncpg.InterfaceError),
    ):
        await save()
    assert mock_func.call_count == 2


@pytest.mark.asyncio
async def test_with_retry_does_not_retry_query_errors() -> None:
    mock_func = AsyncMock(side_effect=asyncpg.UniqueViolationError("duplicate"))

    @with_retry(max_attempts=3, base_delay=0.01)
    async def save() -> None:
        await mock_func()

    with pytest.raises(asyncpg.UniqueViolationError):
        await save()
    assert mock_func.call_count == 1


@pytest.mark.asyncio
async def test_check_pool_health_healthy() -> None:
    mock_conn = AsyncMock()
    mock_conn.fetchval.return_value = 1
    mock_pool = _pool_with_connection(mock_conn)
    mock_pool.get_size.return_value = 5
    mock_pool.get_idle_size.return_value = 3

    health = await check_pool_health(mock_pool)

    assert health == {"healthy": True, "pool_size": 5, "pool_free": 3, "pool_used": 2, "error": None}


@pytest.mark.asyncio
async def test_check_pool_health_unhealthy() -> None:
    mock_pool = MagicMock()
    mock_pool.acquire.side_effect = ConnectionRefusedError("DB down")
    mock_pool.get_size.return_value = 0
    mock_pool.get_idle_size.return_value = 0

    health = await check_pool_health(mock_pool)

    assert health["healthy"] is False
    assert health["error"] == "ConnectionRefusedError"


@pytest.mark.asyncio
async def test_graceful_pool_close_waits_for_active_connections() -> None:
    mock_pool = MagicMock()
    mock_pool.close = AsyncMock()
    mock_pool.get_size.return_value = 5
    mock_pool.get_idle_size.side_effect = [3, 5, 5]

    with patch("helpdesk_chat.utils.db_utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        await graceful_pool_close(mock_pool, timeout=1.0)

    mock_sleep.assert_called_once()
    mock_pool.close.assert_called_once()
