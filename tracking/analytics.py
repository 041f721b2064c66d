"""Analytics for computing integrity statistics from session records."""

import logging
from typing import Any, Dict, Iterable, Optional

import config
from tracking.session import Session, Violation

logger = logging.getLogger(__name__)

STATUS_CRITICAL = "critical"
STATUS_MONITOR = "monitor"
STATUS_GOOD = "good"

STATUS_LABELS = {
    STATUS_CRITICAL: "Critical",
    STATUS_MONITOR: "Needs Monitoring",
    STATUS_GOOD: "Good",
}


def format_watch_time(seconds: float) -> str:
    """
    Format a duration as minutes and zero-padded seconds.

    Truncation to int happens here at display time only.

    Examples:
        >>> format_watch_time(540)
        "9:00"
        >>> format_watch_time(75.9)
        "1:15"
    """
    total_seconds = int(seconds) if seconds > 0 else 0
    minutes, secs = divmod(total_seconds, 60)
    return f"{minutes}:{secs:02d}"


def integrity_status(trust_score: int) -> str:
    """
    Band a trust score for the roster.

    Args:
        trust_score: Score in [0, 100].

    Returns:
        STATUS_CRITICAL below the lockout threshold, STATUS_MONITOR below
        the monitor threshold, else STATUS_GOOD.
    """
    if trust_score < config.LOCKOUT_THRESHOLD:
        return STATUS_CRITICAL
    if trust_score < config.MONITOR_THRESHOLD:
        return STATUS_MONITOR
    return STATUS_GOOD


def count_by_kind(violations: Iterable[Violation]) -> Dict[str, int]:
    """Number of violations per kind value (only kinds that occurred)."""
    counts: Dict[str, int] = {}
    for violation in violations:
        counts[violation.kind.value] = counts.get(violation.kind.value, 0) + 1
    return counts


def compute_statistics(session: Session) -> Dict[str, Any]:
    """
    Compute integrity statistics for one session.

    Args:
        session: Session record.

    Returns:
        Dictionary with trust_score, status, violation_count,
        total_deduction, by_kind, last_violation and watch_seconds.
    """
    log = session.violation_log
    total_deduction = sum(v.deduction for v in log)

    expected = max(0, config.INITIAL_TRUST_SCORE - total_deduction)
    if expected != session.trust_score:
        logger.warning(
            f"Score/log mismatch for {session.session_id}: score={session.trust_score}, "
            f"log implies {expected}"
        )

    last: Optional[Dict[str, Any]] = log[-1].to_dict() if log else None
    return {
        "session_id": session.session_id,
        "display_name": session.display_name,
        "trust_score": session.trust_score,
        "status": integrity_status(session.trust_score),
        "violation_count": len(log),
        "total_deduction": total_deduction,
        "by_kind": count_by_kind(log),
        "last_violation": last,
        "watch_seconds": session.watch_seconds,
    }


def generate_summary_text(stats: Dict[str, Any]) -> str:
    """
    Generate a plain-text summary of a session's integrity.

    Args:
        stats: Statistics dictionary from compute_statistics.

    Returns:
        Human-readable summary string.
    """
    status_label = STATUS_LABELS.get(stats["status"], stats["status"])
    summary = f"""Integrity Summary: {stats['display_name']}
Trust Score: {stats['trust_score']}% ({status_label})
Watch Time: {format_watch_time(stats['watch_seconds'])}
Violations: {stats['violation_count']} (-{stats['total_deduction']} pts)
"""

    for kind_value, count in sorted(stats["by_kind"].items()):
        label = config.VIOLATION_LABELS.get(kind_value, kind_value)
        summary += f"  {label}: {count}\n"

    summary += "\n"
    if stats["violation_count"] == 0:
        summary += "No violations recorded. Session integrity is 100%."
    elif stats["status"] == STATUS_CRITICAL:
        summary += "Access revoked. The learner must be unlocked by their instructor."
    elif stats["status"] == STATUS_MONITOR:
        summary += "Repeated focus anomalies. Keep an eye on this session."
    else:
        summary += "Minor anomalies only."

    return summary
