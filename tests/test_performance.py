import pytest

from utils.performance import aggregate, grade_for, round_half_up, subject_averages
from utils.responses import ApiError

SUMMARIES = [
    {"exam_id": 12, "percentage": 80, "rank": 3, "grade": "A", "exam_type_code": "HY"},
    {"exam_id": 11, "percentage": 60, "rank": 5, "grade": "B", "exam_type_code": "UT1"},
]
MARKS = [
    {"subject_id": 1, "subject_name": "Math", "marks_obtained": 40, "max_marks": 50},
    {"subject_id": 1, "subject_name": "Math", "marks_obtained": 30, "max_marks": 50},
]


def test_student_performance_endpoint(client, db, bearer, student):
    db.on("FROM student_enrollment", [{"enrollment_id": 70}, {"enrollment_id": 61}])
    db.on("FROM exam_summary", SUMMARIES)
    db.on("FROM exam_mark", MARKS)

    resp = client.get("/api/results/performance", headers=bearer(student))

    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["overall"] == 70
    assert data["rank"] == 3
    assert data["subjects"] == {"Math": 70.0}
    assert data["recentTrend"] == [80, 60]
    assert data["lastExam"] == {"examId": 12, "percentage": 80.0, "grade": "A", "code": "HY"}
    summary_sql, summary_params = db.statements("SELECT es.exam_id")[0]
    assert summary_params == (70, 61)
    assert db.closed


def test_no_summaries_is_not_found(client, db, bearer, student):
    db.on("FROM student_enrollment", [{"enrollment_id": 70}])
    resp = client.get("/api/results/performance", headers=bearer(student))
    assert resp.status_code == 404
    assert resp.get_json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.parametrize("count", [1, 4, 5, 9])
def test_trend_is_capped_and_overall_is_mean(count):
    summaries = [{"exam_id": i, "percentage": 50 + i, "rank": None} for i in range(count)]
    result = aggregate(summaries, [])
    assert len(result["recentTrend"]) == min(5, count)
    expected = round(sum(50 + i for i in range(count)) / count, 2)
    assert result["overall"] == pytest.approx(expected)
    assert result["rank"] is None


def test_aggregate_requires_summaries():
    with pytest.raises(ApiError):
        aggregate([], MARKS)


def test_subject_average_skips_unmarked_rows():
    rows = MARKS + [
        {"subject_name": "Math", "marks_obtained": None, "max_marks": 50},
        {"subject_name": "Art", "marks_obtained": 10, "max_marks": 0},
    ]
    assert subject_averages(rows) == {"Math": 70.0}


def test_round_half_up():
    assert round_half_up(70.125, 2) == 70.13
    assert round_half_up(2.5, 0) == 3.0


@pytest.mark.parametrize(
    "pct, grade",
    [(95, "A+"), (90, "A+"), (85, "A"), (72, "B+"), (60, "B"), (55, "C"), (40, "D"), (39.9, "F"), (None, "F")],
)
def test_grade_bands(pct, grade):
    assert grade_for(pct) == grade
