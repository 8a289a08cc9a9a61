from __future__ import annotations

import logging
from typing import Any, Dict

from utils.db import execute, fetch_one
from utils.responses import exam_already_declared, exam_not_found, results_not_generated

logger = logging.getLogger(__name__)


def load_exam(conn, exam_id) -> Dict[str, Any]:
    exam = fetch_one(
        conn,
        """
        SELECT e.exam_id, e.name, e.start_date, e.end_date, e.is_declared,
               et.name AS exam_type_name, et.code AS exam_type_code
        FROM exam e
        LEFT JOIN exam_type et ON et.exam_type_id = e.exam_type_id
        WHERE e.exam_id=%s
        """,
        (exam_id,),
    )
    if not exam:
        raise exam_not_found()
    return exam


def summary_count(conn, exam_id) -> int:
    row = fetch_one(conn, "SELECT COUNT(*) AS total FROM exam_summary WHERE exam_id=%s", (exam_id,))
    return int((row or {}).get("total") or 0)


def declare_exam(conn, exam_id) -> Dict[str, Any]:
    """Pending -> declared. Requires at least one summary row; never reverts.

    The summary check and the update are not atomic: summaries deleted in
    between do not block the declaration.
    """
    exam = load_exam(conn, exam_id)
    if exam.get("is_declared"):
        raise exam_already_declared()
    if summary_count(conn, exam_id) == 0:
        raise results_not_generated()
    # is_declared=0 in the predicate keeps a concurrent double declare a no-op
    execute(conn, "UPDATE exam SET is_declared=1 WHERE exam_id=%s AND is_declared=0", (exam_id,))
    conn.commit()
    logger.info("Exam %s results declared", exam_id)
    return exam
