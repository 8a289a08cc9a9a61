"""Student results analytics: overall percentage, best rank, last exam,
per-subject averages and the recent trend."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from utils.db import fetch_all, placeholders
from utils.query import enrollment_ids_for_student
from utils.responses import not_found

TREND_LENGTH = 5


def round_half_up(value: float, digits: int) -> float:
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def subject_averages(marks: Sequence[Mapping[str, Any]]) -> Dict[str, float]:
    """Mean of per-row ``100 * obtained / max`` per subject, rounded to 1 decimal.

    Rows with a zero/absent ``max_marks`` or no ``marks_obtained`` are skipped.
    """
    totals: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    for m in marks:
        max_marks = float(m.get("max_marks") or 0)
        obtained = m.get("marks_obtained")
        if max_marks <= 0 or obtained is None:
            continue
        key = str(m.get("subject_name") or m.get("subject_id"))
        totals[key] = totals.get(key, 0.0) + float(obtained) / max_marks * 100
        counts[key] = counts.get(key, 0) + 1
    return {name: round_half_up(totals[name] / counts[name], 1) for name in totals}


def aggregate(summaries: Sequence[Mapping[str, Any]], marks: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """``summaries`` must already be ordered by ``updated_at`` descending."""
    if not summaries:
        raise not_found("No exam summaries found")
    percentages = [float(s.get("percentage") or 0) for s in summaries]
    ranks = [int(s["rank"]) for s in summaries if s.get("rank") is not None]
    last = summaries[0]
    return {
        "overall": round_half_up(sum(percentages) / len(percentages), 2),
        "rank": min(ranks) if ranks else None,
        "lastExam": {
            "examId": last.get("exam_id"),
            "percentage": float(last.get("percentage") or 0),
            "grade": last.get("grade"),
            "code": last.get("exam_type_code"),
        },
        "subjects": subject_averages(marks),
        "recentTrend": percentages[:TREND_LENGTH],
    }


def fetch_summaries(conn, enrollment_ids: List[int]) -> List[Dict[str, Any]]:
    return fetch_all(
        conn,
        f"""
        SELECT es.exam_id, es.enrollment_id, es.total_marks, es.percentage, es.rank, es.grade,
               es.updated_at, et.code AS exam_type_code
        FROM exam_summary es
        LEFT JOIN exam e ON e.exam_id = es.exam_id
        LEFT JOIN exam_type et ON et.exam_type_id = e.exam_type_id
        WHERE es.enrollment_id IN ({placeholders(enrollment_ids)})
        ORDER BY es.updated_at DESC
        """,
        enrollment_ids,
    )


def fetch_marks(conn, enrollment_ids: List[int]) -> List[Dict[str, Any]]:
    return fetch_all(
        conn,
        f"""
        SELECT em.subject_id, em.marks_obtained, em.max_marks, s.name AS subject_name
        FROM exam_mark em
        LEFT JOIN subject s ON s.subject_id = em.subject_id
        WHERE em.enrollment_id IN ({placeholders(enrollment_ids)})
        """,
        enrollment_ids,
    )


def student_performance(conn, student_id) -> Dict[str, Any]:
    enrollment_ids = enrollment_ids_for_student(conn, student_id)
    if not enrollment_ids:
        raise not_found("No enrollments found")
    summaries = fetch_summaries(conn, enrollment_ids)
    if not summaries:
        raise not_found("No exam summaries found")
    return aggregate(summaries, fetch_marks(conn, enrollment_ids))


def grade_for(percentage: Optional[float]) -> str:
    p = float(percentage or 0)
    if p >= 90:
        return "A+"
    if p >= 80:
        return "A"
    if p >= 70:
        return "B+"
    if p >= 60:
        return "B"
    if p >= 50:
        return "C"
    if p >= 40:
        return "D"
    return "F"
