"""
Utility helpers for notepath.

Provides:
- Structured logging configuration with timestamps.
- Retry with exponential back-off.
- Wall-clock timing of pipeline stages.
- Embedding ↔ BLOB serialisation helpers.
- Path id generation.
"""

import contextlib
import logging
import time
import uuid
from typing import Any, Callable, Generator, Optional, TypeVar

import numpy as np

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def setup_logging(
    level: int = logging.INFO,
    fmt: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt: str = "%Y-%m-%dT%H:%M:%S%z",
) -> None:
    """Configure the root logger with timestamped structured output."""
    logging.basicConfig(level=level, format=fmt, datefmt=datefmt, force=True)


@contextlib.contextmanager
def timed(label: str) -> Generator[None, None, None]:
    """Context manager that logs elapsed wall-clock time for *label*."""
    logger = logging.getLogger(__name__)
    t0 = time.monotonic()
    yield
    elapsed = time.monotonic() - t0
    logger.info("⏱  %s completed in %.2fs.", label, elapsed)


# ---------------------------------------------------------------------------
# Embedding serialisation
# ---------------------------------------------------------------------------


def embedding_to_blob(arr: np.ndarray) -> bytes:
    """Serialise a numpy float32 array to raw bytes for SQLite BLOB."""
    return np.asarray(arr, dtype=np.float32).tobytes()


def blob_to_embedding(blob: bytes) -> np.ndarray:
    """Deserialise a SQLite BLOB back to a numpy float32 array."""
    return np.frombuffer(blob, dtype=np.float32).copy()


# ---------------------------------------------------------------------------
# Retry with exponential back-off
# ---------------------------------------------------------------------------


def retry_with_backoff(
    fn: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 0.5,
    logger: Optional[logging.Logger] = None,
    **kwargs: Any,
) -> T:
    """Call *fn* with retry and exponential back-off on exception."""
    if logger is None:
        logger = logging.getLogger(__name__)

    last_exc: BaseException = RuntimeError("unreachable")
    for attempt in range(1, max_retries + 1):
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            last_exc = exc
            if attempt == max_retries:
                break
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Attempt %d/%d failed for %s: %s; retrying in %.1fs",
                attempt,
                max_retries,
                getattr(fn, "__name__", repr(fn)),
                exc,
                delay,
            )
            time.sleep(delay)

    raise last_exc


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def generate_path_id() -> str:
    """Return a unique id of the form ``path-<epoch-ms>-<9 hex chars>``."""
    return f"path-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
