"""Small helpers shared by the test modules."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def fund(engine, account_id, amount, admin_id):
    """Credit an account the only legitimate way: a confirmed deposit."""
    req = engine.submit_deposit(account_id, Decimal(str(amount)), "USDT")
    return engine.resolve_deposit(req.id, admin_id, "confirmed", tx_hash="0xfund")


def balance(engine, account_id) -> Decimal:
    return engine.get_account(account_id).balance


def run_together(fn, n):
    """Call `fn()` from `n` threads released at the same moment.

    Returns each call's result, or the exception it raised.
    """
    barrier = threading.Barrier(n)

    def _call():
        barrier.wait()
        try:
            return fn()
        except Exception as e:
            return e

    with ThreadPoolExecutor(max_workers=n) as pool:
        futures = [pool.submit(_call) for _ in range(n)]
        return [f.result() for f in futures]
