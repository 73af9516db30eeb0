"""
Safety Guardian — keeps batch processors read-only.
Validates HTTP methods and URLs before any request leaves a worker.
"""

from __future__ import annotations

import logging
import re
import threading
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("m365_batch_engine.safety")

# ─── Allowed / Blocked ───────────────────────────────────────────────────────

READ_METHODS = {"GET", "HEAD", "OPTIONS"}
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE", "MERGE"}

# SharePoint / Graph action URLs that mutate state even when tunnelled
BLOCKED_URL_PATTERNS = [
    re.compile(r"/_api/.*/recycle(\(\))?$", re.IGNORECASE),
    re.compile(r"/_api/.*/delete(object)?(\(\))?$", re.IGNORECASE),
    re.compile(r"/_api/.*/breakroleinheritance", re.IGNORECASE),
    re.compile(r"/_api/.*/addroleassignment", re.IGNORECASE),
    re.compile(r"/_api/.*/removeroleassignment", re.IGNORECASE),
    re.compile(r"/_layouts/15/.*\.aspx\?.*action=delete", re.IGNORECASE),
    re.compile(r"/resetPassword$", re.IGNORECASE),
    re.compile(r"/revokeSignInSessions$", re.IGNORECASE),
    re.compile(r"/wipe$", re.IGNORECASE),
]

URL_SCHEMES = ("http://", "https://")


class SafetyViolation(Exception):
    """Raised when a write operation or malformed target is attempted."""
    pass


class SafetyGuardian:
    """
    Validates every outbound request a processor makes.
    Shared by all workers of a run, so counters and the violation log are
    guarded by a lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate that a request is read-only.
        Returns True if safe, raises SafetyViolation if not.
        """
        with self._lock:
            self.checks_performed += 1
        method_upper = method.upper()

        if not url.lower().startswith(URL_SCHEMES):
            self._record_violation(method_upper, url, "Unsupported URL scheme")
            raise SafetyViolation(f"SAFETY VIOLATION: Not an http(s) URL: {url!r}")

        for pattern in BLOCKED_URL_PATTERNS:
            if pattern.search(url):
                self._record_violation(method_upper, url, "Blocked write-pattern URL")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: Write-pattern URL detected: {method_upper} {url}"
                )

        if method_upper in READ_METHODS:
            return True

        reason = "Write HTTP method blocked" if method_upper in WRITE_METHODS else "Unknown HTTP method"
        self._record_violation(method_upper, url, reason)
        raise SafetyViolation(f"SAFETY VIOLATION: {reason}: {method_upper} {url}")

    def _record_violation(self, method: str, url: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "reason": reason,
        }
        with self._lock:
            self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full safety audit record."""
        with self._lock:
            violations = list(self.violations)
            checks = self.checks_performed
        return {
            "safety_guardian": {
                "mode": "READ-ONLY",
                "started_at": self.started_at,
                "checks_performed": checks,
                "violations_detected": len(violations),
                "violations": violations,
                "status": "CLEAN" if not violations else "VIOLATIONS_DETECTED",
            }
        }
