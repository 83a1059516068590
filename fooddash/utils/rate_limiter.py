from functools import wraps
from flask import request, jsonify, current_app
from datetime import datetime, timedelta
from collections import defaultdict, deque
from threading import Lock
import logging

logger = logging.getLogger(__name__)

# Per-process sliding window; each worker counts on its own
rate_limit_store = defaultdict(deque)
_store_lock = Lock()

def client_key(kwargs):
    """Authenticated user when known, otherwise the remote address"""
    current_user = kwargs.get('current_user')
    if current_user is not None:
        return f"user_{current_user.id}"
    return request.headers.get('X-Forwarded-For', request.remote_addr or 'unknown').split(',')[0].strip()

def hit(key, max_requests, window, now=None):
    """Record one request; returns seconds to wait, or 0 if allowed"""
    now = now or datetime.utcnow()
    with _store_lock:
        hits = rate_limit_store[key]
        while hits and hits[0] <= now - window:
            hits.popleft()
        if len(hits) >= max_requests:
            return max(1, int((hits[0] + window - now).total_seconds()))
        hits.append(now)
        return 0

def rate_limit(max_requests=100, window_minutes=15, scope=None):
    """Limit a view to max_requests per window_minutes for each client"""
    window = timedelta(minutes=window_minutes)

    def decorator(f):
        bucket = scope or f.__name__

        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_app.config.get('RATELIMIT_ENABLED', True):
                return f(*args, **kwargs)

            key = f"{bucket}:{client_key(kwargs)}"
            retry_after = hit(key, max_requests, window)
            if retry_after:
                logger.warning("Rate limit exceeded for %s", key)
                response = jsonify({
                    'error': 'Rate limit exceeded',
                    'message': f'Maximum {max_requests} requests per {window_minutes} minutes'
                })
                response.headers['Retry-After'] = str(retry_after)
                return response, 429

            return f(*args, **kwargs)
        return decorated_function
    return decorator
