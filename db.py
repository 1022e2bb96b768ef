import logging
import threading
from contextlib import contextmanager

import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from settings import settings

logger = logging.getLogger("tipsettle.db")

_pool: ThreadedConnectionPool | None = None
_pool_lock = threading.Lock()


def init_pool():
    """
    Create the shared connection pool on first use.

    Webhook handlers run in the API threadpool and jobs run on scheduler
    threads, so the pool must be the threaded variant.
    """
    global _pool
    with _pool_lock:
        if _pool is None:
            psycopg2.extras.register_uuid()
            _pool = ThreadedConnectionPool(
                minconn=settings.DB_POOL_MIN,
                maxconn=settings.DB_POOL_MAX,
                dsn=settings.DATABASE_URL,
                connect_timeout=5,
            )
            logger.info("db pool ready min=%s max=%s", settings.DB_POOL_MIN, settings.DB_POOL_MAX)
    return _pool


def close_pool():
    global _pool
    with _pool_lock:
        if _pool:
            _pool.closeall()
            _pool = None


@contextmanager
def get_conn():
    """
    One connection, one transaction: commit on success, rollback on error.
    """
    pool = _pool or init_pool()
    conn = pool.getconn()

    try:
        # settlement transactions hold row locks; keep them short
        with conn.cursor() as cur:
            cur.execute("SET statement_timeout = %s;", (f"{settings.DB_STATEMENT_TIMEOUT_MS}ms",))
            cur.execute("SET idle_in_transaction_session_timeout = '60000ms';")
            cur.execute("SET application_name = 'tipsettle_api';")

        yield conn
        conn.commit()

    except Exception:
        conn.rollback()
        raise

    finally:
        pool.putconn(conn)
