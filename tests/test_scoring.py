from types import SimpleNamespace

from jobpipe.services.scoring import calculate_priority_score


def test_easy_apply_remote_job_scores_eighty() -> None:
    assert calculate_priority_score({"is_easy_apply": True, "work_type": "Remote"}) == 80


def test_verified_only_job_scores_thirty() -> None:
    assert calculate_priority_score({"has_verified": True}) == 30


def test_score_is_clamped_to_one_hundred() -> None:
    job = {
        "is_easy_apply": True,
        "is_promoted": True,
        "insight": "Actively Reviewing applicants",
        "posted_date": "3 hours ago",
        "work_type": "remote",
    }
    assert calculate_priority_score(job) == 100


def test_recent_posting_and_insight_matching_is_case_insensitive() -> None:
    job = {"insight": "ACTIVELY REVIEWING", "posted_date": "Posted TODAY"}
    assert calculate_priority_score(job) == 90


def test_work_type_must_equal_remote_after_trimming() -> None:
    assert calculate_priority_score({"work_type": "  REMOTE "}) == 60
    assert calculate_priority_score({"work_type": "Hybrid remote"}) == 50


def test_missing_fields_score_base_and_objects_are_accepted() -> None:
    assert calculate_priority_score({}) == 50
    job = SimpleNamespace(is_promoted=True, posted_date="1 week ago", work_type=None)
    assert calculate_priority_score(job) == 60


def test_score_is_deterministic() -> None:
    job = {"is_promoted": True, "has_verified": True, "insight": "Be an early applicant"}
    assert {calculate_priority_score(job) for _ in range(5)} == {40}
