import pytest

from unified_assessment.config import (
    ConfigurationError,
    ExamDateLookupConfig,
    load_exam_date_config,
)


def test_base_url_is_used_as_given():
    cfg = load_exam_date_config({"EXAMINATION_API_BASE_URL": "http://exam.local:9000/api/"})
    assert cfg.base_url == "http://exam.local:9000/api"


def test_host_and_port_build_base_url():
    cfg = load_exam_date_config({"EXAMINATION_API_HOST": "10.0.0.5", "EXAMINATION_API_PORT": "8081"})
    assert cfg.base_url == "http://10.0.0.5:8081/api"


def test_base_url_wins_over_host_and_port():
    cfg = load_exam_date_config({
        "EXAMINATION_API_BASE_URL": "https://exam.example/api",
        "EXAMINATION_API_HOST": "10.0.0.5",
        "EXAMINATION_API_PORT": "8081",
    })
    assert cfg.base_url == "https://exam.example/api"


@pytest.mark.parametrize("env", [
    {},
    {"EXAMINATION_API_HOST": "10.0.0.5"},
    {"EXAMINATION_API_PORT": "8081"},
    {"EXAMINATION_API_BASE_URL": "   "},
])
def test_missing_endpoint_is_fatal(env):
    with pytest.raises(ConfigurationError):
        load_exam_date_config(env)


def test_timings_are_read_in_milliseconds():
    cfg = load_exam_date_config({
        "EXAMINATION_API_BASE_URL": "http://exam.local/api",
        "EXAMINATION_API_TIMEOUT": "2500",
        "EXAMINATION_API_RETRY_COUNT": "5",
        "EXAMINATION_API_RETRY_DELAY": "200",
    })
    assert cfg.timeout == 2.5
    assert cfg.retry_count == 5
    assert cfg.retry_delay == 0.2


def test_defaults_for_timings():
    cfg = load_exam_date_config({"EXAMINATION_API_BASE_URL": "http://exam.local/api"})
    assert cfg.timeout == 10.0
    assert cfg.retry_count == 3
    assert cfg.retry_delay == 1.0


def test_non_integer_setting_is_rejected():
    with pytest.raises(ConfigurationError):
        load_exam_date_config({
            "EXAMINATION_API_BASE_URL": "http://exam.local/api",
            "EXAMINATION_API_RETRY_COUNT": "three",
        })


def test_retry_count_is_at_least_one():
    cfg = ExamDateLookupConfig(base_url="http://x", timeout=1, retry_count=0, retry_delay=0)
    assert cfg.retry_count == 1


@pytest.mark.parametrize("raw", ["0", "-500"])
def test_non_positive_timeout_setting_uses_default(raw):
    cfg = load_exam_date_config({
        "EXAMINATION_API_BASE_URL": "http://exam.local/api",
        "EXAMINATION_API_TIMEOUT": raw,
    })
    assert cfg.timeout == 10.0


@pytest.mark.parametrize("timeout", [0, -1, None])
def test_non_positive_timeout_is_rejected_at_construction(timeout):
    with pytest.raises(ConfigurationError):
        ExamDateLookupConfig(base_url="http://x", timeout=timeout, retry_count=1, retry_delay=0)


def test_negative_retry_delay_is_clamped_to_zero():
    cfg = ExamDateLookupConfig(base_url="http://x", timeout=1, retry_count=2, retry_delay=-1)
    assert cfg.retry_delay == 0.0

    from_env = load_exam_date_config({
        "EXAMINATION_API_BASE_URL": "http://exam.local/api",
        "EXAMINATION_API_RETRY_DELAY": "-250",
    })
    assert from_env.retry_delay == 0.0
