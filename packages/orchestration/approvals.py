"""
ApprovalManager - typed approval requests the user must decide on.

A request is pending until approved, rejected or expired. Types listed in
``auto_approve`` are approved as soon as they are requested.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class ApprovalType(str, Enum):
    RESEARCH = "research"
    PRD = "prd"
    ARCHITECTURE = "architecture"
    PHASE = "phase"
    FIX = "fix"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ApprovalRequest:
    id: str
    type: ApprovalType
    title: str
    description: str = ""
    content: Any = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    rejection_reason: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @property
    def pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "rejection_reason": self.rejection_reason,
            "created_at": self.created_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


@dataclass
class ApprovalDecision:
    approved: bool
    reason: Optional[str] = None
    decision_time_s: float = 0.0


class ApprovalManager:
    def __init__(
        self,
        auto_approve: Iterable[str] = (),
        default_timeout_s: Optional[float] = None,
    ):
        self.auto_approve = {ApprovalType(t) for t in auto_approve}
        self.default_timeout_s = default_timeout_s
        self._requests: Dict[str, ApprovalRequest] = {}
        self._waiters: Dict[str, asyncio.Future] = {}

    def is_auto_approved(self, approval_type: str) -> bool:
        return ApprovalType(approval_type) in self.auto_approve

    def set_auto_approve(self, approval_type: str, enabled: bool) -> None:
        kind = ApprovalType(approval_type)
        if enabled:
            self.auto_approve.add(kind)
        else:
            self.auto_approve.discard(kind)

    def request(
        self,
        approval_type: str,
        title: str,
        description: str = "",
        content: Any = None,
        timeout_s: Optional[float] = None,
    ) -> ApprovalRequest:
        kind = ApprovalType(approval_type)
        request = ApprovalRequest(
            id=f"approval_{uuid.uuid4().hex[:10]}",
            type=kind,
            title=title,
            description=description,
            content=content,
        )
        timeout_s = timeout_s if timeout_s is not None else self.default_timeout_s
        if timeout_s:
            request.expires_at = request.created_at + timedelta(seconds=timeout_s)
        self._requests[request.id] = request

        if kind in self.auto_approve:
            self._resolve(request, ApprovalStatus.APPROVED)
        else:
            logger.info(f"Approval requested ({kind.value}): {title}")
        return request

    def approve(self, request_id: str) -> bool:
        request = self._pending(request_id)
        if request is None:
            return False
        self._resolve(request, ApprovalStatus.APPROVED)
        return True

    def reject(self, request_id: str, reason: Optional[str] = None) -> bool:
        request = self._pending(request_id)
        if request is None:
            return False
        self._resolve(request, ApprovalStatus.REJECTED, reason)
        return True

    def expire_overdue(self) -> int:
        now = _utcnow()
        expired = 0
        for request in self.pending_requests():
            if request.expires_at is not None and request.expires_at <= now:
                self._resolve(request, ApprovalStatus.EXPIRED, "Request expired")
                expired += 1
        return expired

    async def wait_for_decision(
        self, request_id: str, timeout_s: Optional[float] = None
    ) -> ApprovalDecision:
        """
        Wait until the request is decided.

        A timeout (explicit, or derived from ``expires_at``) expires the request.
        """
        request = self._requests.get(request_id)
        if request is None:
            return ApprovalDecision(False, "Request not found")
        if not request.pending:
            return self._decision(request)

        if timeout_s is None and request.expires_at is not None:
            timeout_s = max(0.0, (request.expires_at - _utcnow()).total_seconds())

        future = self._waiters.get(request_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._waiters[request_id] = future
        try:
            await asyncio.wait_for(asyncio.shield(future), timeout=timeout_s)
        except asyncio.TimeoutError:
            if request.pending:
                self._resolve(request, ApprovalStatus.EXPIRED, "Request expired")
        return self._decision(request)

    def get(self, request_id: str) -> Optional[ApprovalRequest]:
        return self._requests.get(request_id)

    def pending_requests(self) -> List[ApprovalRequest]:
        return [r for r in self._requests.values() if r.pending]

    def current(self) -> Optional[ApprovalRequest]:
        """Most recent pending request."""
        pending = self.pending_requests()
        return pending[-1] if pending else None

    def has_pending(self) -> bool:
        return bool(self.pending_requests())

    def requests(self, approval_type: Optional[str] = None) -> List[ApprovalRequest]:
        if approval_type is None:
            return list(self._requests.values())
        kind = ApprovalType(approval_type)
        return [r for r in self._requests.values() if r.type == kind]

    def clear(self) -> None:
        for request in self.pending_requests():
            self._resolve(request, ApprovalStatus.REJECTED, "Cleared")
        self._requests.clear()

    def statistics(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in ApprovalStatus}
        by_type: Dict[str, Dict[str, int]] = {}
        decision_times: List[float] = []
        for request in self._requests.values():
            counts[request.status.value] += 1
            entry = by_type.setdefault(request.type.value, {"count": 0, "approved": 0})
            entry["count"] += 1
            if request.status == ApprovalStatus.APPROVED:
                entry["approved"] += 1
            if request.resolved_at is not None:
                decision_times.append((request.resolved_at - request.created_at).total_seconds())
        return {
            "total": len(self._requests),
            **counts,
            "average_decision_time_s": (
                sum(decision_times) / len(decision_times) if decision_times else 0.0
            ),
            "by_type": by_type,
        }

    # ==================== Internals ====================

    def _pending(self, request_id: str) -> Optional[ApprovalRequest]:
        request = self._requests.get(request_id)
        if request is None or not request.pending:
            return None
        return request

    def _resolve(
        self, request: ApprovalRequest, status: ApprovalStatus, reason: Optional[str] = None
    ) -> None:
        request.status = status
        request.resolved_at = _utcnow()
        if status != ApprovalStatus.APPROVED:
            request.rejection_reason = reason
        logger.info(f"Approval {request.id} ({request.type.value}) {status.value}")
        future = self._waiters.pop(request.id, None)
        if future is not None and not future.done():
            future.set_result(status)

    @staticmethod
    def _decision(request: ApprovalRequest) -> ApprovalDecision:
        resolved = request.resolved_at or _utcnow()
        return ApprovalDecision(
            approved=request.status == ApprovalStatus.APPROVED,
            reason=request.rejection_reason,
            decision_time_s=(resolved - request.created_at).total_seconds(),
        )
