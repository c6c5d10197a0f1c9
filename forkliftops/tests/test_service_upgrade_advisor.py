from forkliftops.domain.job import JobType
from forkliftops.services.service_upgrade_advisor import advise, is_service_due, overdue_hours


def test_overdue_hours_against_500h_interval():
    assert overdue_hours(1600, 1000) == 100
    assert overdue_hours(1400, 1000) == -100
    assert overdue_hours(None, 1000) is None
    assert overdue_hours(1600, None) is None


def test_minor_service_on_overdue_asset_prompts_upgrade():
    advice = advise(JobType.MINOR_SERVICE, 1600, 1000)
    assert advice.overdue_hours == 100
    assert advice.prompt is not None
    assert advice.prompt.current_hourmeter == 1600
    assert advice.prompt.target_hourmeter == 1500
    assert advice.prompt.overdue_hours == 100


def test_no_prompt_when_not_overdue_or_not_minor_service():
    assert advise(JobType.MINOR_SERVICE, 1500, 1000).prompt is None
    assert advise(JobType.MINOR_SERVICE, 1200, 1000).prompt is None
    assert advise(JobType.REPAIR, 1600, 1000).prompt is None
    assert advise(JobType.MINOR_SERVICE, 1600, None).prompt is None


def test_custom_interval():
    assert advise(JobType.MINOR_SERVICE, 1300, 1000, interval=250).overdue_hours == 50


def test_service_due_flag():
    assert is_service_due(1500, 1000) is True
    assert is_service_due(1499, 1000) is False
    assert is_service_due(None, None) is False
