"""
Simple memory-based rate limiter for payment initiation.
Keyed by the calling member (falls back to client IP).
"""
import threading
import time
from fastapi import Request, HTTPException
from typing import Dict, Tuple

# In-memory storage: {key: (window_start, count)}
_rate_limit_store: Dict[str, Tuple[float, int]] = {}
_lock = threading.Lock()


def rate_limit(requests: int, window: int):
    """
    Dependency for rate limiting.
    Example: Depends(rate_limit(requests=5, window=60))
    """
    def limiter(request: Request):
        caller = request.headers.get("member-id") or request.headers.get("staff-id")
        key = caller or (request.client.host if request.client else "unknown")
        key = f"{request.url.path}:{key}"
        now = time.time()

        with _lock:
            if key not in _rate_limit_store:
                _rate_limit_store[key] = (now, 1)
                return True

            last_ts, count = _rate_limit_store[key]

            # Reset window if expired
            if now - last_ts > window:
                _rate_limit_store[key] = (now, 1)
                return True

            if count >= requests:
                raise HTTPException(
                    status_code=429,
                    detail=f"Rate limit exceeded. Try again in {int(window - (now - last_ts))} seconds."
                )

            _rate_limit_store[key] = (last_ts, count + 1)
        return True

    return limiter


def reset_rate_limits() -> None:
    with _lock:
        _rate_limit_store.clear()
