import logging
import time

from pymongo import monitoring
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("performance")

QUIET_PATHS = ("/", "/api/health", "/favicon.ico", "/robots.txt")


class CommandLogger(monitoring.CommandListener):
    """Logs slow MongoDB commands. Attached per client via event_listeners."""

    def __init__(self, slow_ms: float = 100.0):
        self.slow_ms = slow_ms
        self._timings = {}

    def started(self, event):
        self._timings[event.request_id] = time.time()

    def succeeded(self, event):
        start_time = self._timings.pop(event.request_id, None)
        if start_time:
            duration = (time.time() - start_time) * 1000
            if duration > self.slow_ms:
                logger.warning(f"🐌 Slow MongoDB {event.command_name}: {duration:.2f} ms")

    def failed(self, event):
        start_time = self._timings.pop(event.request_id, None)
        duration = (time.time() - start_time) * 1000 if start_time else 0
        # Transaction conflicts are retried by the store; keep them out of the error log
        if "WriteConflict" in str(event.failure):
            logger.info(f"🔁 MongoDB {event.command_name} write conflict after {duration:.2f} ms")
            return
        logger.error(f"❌ MongoDB {event.command_name} failed after {duration:.2f} ms")


class TimingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, slow_ms: int = 2500):
        super().__init__(app)
        self.slow_ms = slow_ms

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response: Response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        path = request.url.path
        if path not in QUIET_PATHS:
            if process_time > self.slow_ms:
                logger.warning(f"🐌 Slow request {request.method} {path} took {process_time:.2f} ms (threshold {self.slow_ms} ms)")
            else:
                logger.info(f"⏱️ Request {request.method} {path} took {process_time:.2f} ms")

        response.headers["X-Process-Time-ms"] = f"{process_time:.2f}"
        return response
