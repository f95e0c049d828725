from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXECUTOR = ThreadPoolExecutor(max_workers=16, thread_name_prefix="checkout-call")


class CallTimeoutError(Exception):
    """The call did not finish in time. Its side effect may or may not have happened."""

    def __init__(self, name: str, timeout_s: float) -> None:
        super().__init__(f"{name} timed out after {timeout_s}s")
        self.name = name
        self.timeout_s = timeout_s


@dataclass(frozen=True, slots=True)
class CallTimeouts:
    quote_s: float | None = 15.0
    payment_s: float | None = 20.0
    commit_s: float | None = 10.0

    @classmethod
    def from_env(cls) -> "CallTimeouts":
        return cls(
            quote_s=float(os.getenv("TABLEFRONT_QUOTE_TIMEOUT_S", "15")),
            payment_s=float(os.getenv("TABLEFRONT_PAYMENT_TIMEOUT_S", "20")),
            commit_s=float(os.getenv("TABLEFRONT_COMMIT_TIMEOUT_S", "10")),
        )


def call_with_timeout(fn: Callable[[], T], timeout_s: float | None, *, name: str) -> T:
    """Run ``fn`` and wait at most ``timeout_s`` for it.

    The worker is not interrupted on timeout; a late result is discarded. ``None``
    runs inline with no deadline.
    """

    if timeout_s is None:
        return fn()

    future = _EXECUTOR.submit(fn)
    try:
        return future.result(timeout=timeout_s)
    except FutureTimeoutError as e:
        logger.warning("checkout.call_timeout call=%s timeout_s=%s", name, timeout_s)
        raise CallTimeoutError(name, timeout_s) from e
