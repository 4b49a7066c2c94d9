"""Tool-call middleware for stacksmith.

Logs every tool call with its duration, runs mutating tools one at a time so
their GitHub writes and stack-store updates never interleave, and warns about
slow or rapid-fire writes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any

from fastmcp.server.middleware.middleware import CallNext, Middleware, MiddlewareContext

logger = logging.getLogger(__name__)

WRITE_TOOLS = frozenset({
    "comment_on_pr",
    "add_review_comment",
    "reply_to_comment",
    "delete_comment",
    "approve_pr",
    "merge_pr",
    "close_pr",
    "request_reviewers",
    "resolve_thread",
    "unresolve_thread",
    "rerun_check",
    "rerun_all_checks",
})

RAPID_WRITE_THRESHOLD = 4
RAPID_WRITE_WINDOW_SECONDS = 2.0
SLOW_WRITE_SECONDS = 30.0


class WriteOperationMiddleware(Middleware):
    """Serialize write tools and log every tool call.

    - Write tools run under one lock, in arrival order
    - Every call is logged with duration and outcome
    - Rapid write sequences (4+ writes in 2s) and slow writes (>30s) are warned about
    """

    def __init__(
        self,
        *,
        write_tools: frozenset[str] = WRITE_TOOLS,
        rapid_threshold: int = RAPID_WRITE_THRESHOLD,
        rapid_window: float = RAPID_WRITE_WINDOW_SECONDS,
        slow_threshold: float = SLOW_WRITE_SECONDS,
    ) -> None:
        self._write_tools = write_tools
        self._rapid_threshold = rapid_threshold
        self._rapid_window = rapid_window
        self._slow_threshold = slow_threshold
        self._recent_writes: deque[float] = deque()
        self._write_lock = asyncio.Lock()
        self.call_count = 0

    def is_write(self, tool_name: str) -> bool:
        return tool_name in self._write_tools

    def _check_rapid_writes(self, now: float) -> str | None:
        """Check if we're in a rapid write sequence. Returns warning message or None."""
        self._recent_writes.append(now)

        # Prune old entries outside the window
        cutoff = now - self._rapid_window
        while self._recent_writes and self._recent_writes[0] < cutoff:
            self._recent_writes.popleft()

        if len(self._recent_writes) >= self._rapid_threshold:
            window = now - self._recent_writes[0]
            return f"Rapid write sequence detected ({len(self._recent_writes)} writes in {window:.1f}s)"
        return None

    async def on_call_tool(
        self,
        context: MiddlewareContext,
        call_next: CallNext,
    ) -> Any:
        """Intercept tool calls to serialize writes and log timing."""
        tool_name = getattr(context.message, "name", "unknown")
        is_write = self.is_write(tool_name)
        self.call_count += 1

        if not is_write:
            return await self._timed(tool_name, context, call_next, is_write=False)

        warning = self._check_rapid_writes(time.monotonic())
        if warning:
            logger.warning(warning)

        if self._write_lock.locked():
            logger.debug("Write tool %s waiting for an in-flight write", tool_name)
        async with self._write_lock:
            return await self._timed(tool_name, context, call_next, is_write=True)

    async def _timed(
        self,
        tool_name: str,
        context: MiddlewareContext,
        call_next: CallNext,
        *,
        is_write: bool,
    ) -> Any:
        start = time.perf_counter()
        outcome = "ok"
        try:
            return await call_next(context)
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except Exception:
            outcome = "error"
            raise
        finally:
            duration = time.perf_counter() - start
            logger.info(
                "Tool %s (%s) finished in %.0fms: %s",
                tool_name,
                "write" if is_write else "read",
                duration * 1000,
                outcome,
            )
            if is_write and duration > self._slow_threshold:
                logger.warning(
                    "Slow write operation: %s took %.0fms (threshold: %.0fms)",
                    tool_name,
                    duration * 1000,
                    self._slow_threshold * 1000,
                )
