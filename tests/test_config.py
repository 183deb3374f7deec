import pytest

from oldmanfooty.config import ConfigError, MySidelineSettings

BASE = {
    'MYSIDELINE_SYNC_ENABLED': True,
    'MYSIDELINE_SYNC_SCHEDULE': '0 3 * * *',
    'MYSIDELINE_URL': 'https://profile.mysideline.com.au/register/clubsearch/?criteria=Masters',
}


def settings(**overrides):
    return MySidelineSettings.from_config({**BASE, **overrides})


def test_defaults():
    s = settings()

    assert s.timeout_ms == 60_000
    assert s.retry_attempts == 3
    assert s.retry_backoff_ms == 1_000
    assert s.staleness_threshold_ms == 3_600_000
    assert s.run_budget_ms == 60_000 * 3 + 120_000
    assert s.sync_type == 'mysideline'
    assert s.allow_manual_when_disabled is True


def test_environment_strings_are_coerced():
    s = settings(MYSIDELINE_REQUEST_TIMEOUT='2500', MYSIDELINE_RETRY_ATTEMPTS='5', MYSIDELINE_RUN_BUDGET='9000')

    assert s.timeout_ms == 2_500
    assert s.retry_attempts == 5
    assert s.run_budget_ms == 9_000


@pytest.mark.parametrize('overrides', [
    {'MYSIDELINE_URL': 'mysideline.com.au'},
    {'MYSIDELINE_URL': 'ftp://mysideline.com.au/'},
    {'MYSIDELINE_SYNC_SCHEDULE': 'nightly'},
    {'MYSIDELINE_REQUEST_TIMEOUT': 'soon'},
    {'MYSIDELINE_REQUEST_TIMEOUT': 0},
    {'MYSIDELINE_RETRY_ATTEMPTS': -1},
    {'MYSIDELINE_RETRY_BACKOFF': -5},
    {'MYSIDELINE_RUN_BUDGET': '0'},
])
def test_invalid_values_raise_config_error(overrides):
    with pytest.raises(ConfigError):
        settings(**overrides)


def test_as_dict_is_camel_case():
    data = settings(MYSIDELINE_USE_MOCK=True).as_dict()

    assert data['useMock'] is True
    assert data['timeoutMs'] == 60_000
    assert data['schedule'] == '0 3 * * *'
