"""
Integration tests for the dispatchlock stores.

SQLite tests run whenever aiosqlite is installed. PostgreSQL tests need a
reachable database named by DISPATCHLOCK_TEST_POSTGRES_URL.

Run integration tests:
    pytest tests/integration/ -v

Run only PostgreSQL tests:
    DISPATCHLOCK_TEST_POSTGRES_URL=postgresql+asyncpg://... pytest tests/integration/ -v -m postgres

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
