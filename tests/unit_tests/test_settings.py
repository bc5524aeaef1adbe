import pytest
from pydantic import ValidationError

from file_alloc.settings import Settings, get_settings

ENV_VARS = (
    "DEPLOYMENT_MODE",
    "AWS_ENDPOINT_URL",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "SQS_QUEUE_URL",
    "S3_BUCKET_NAME",
    "FILE_BUCKET",
    "MAX_FILE_SIZE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_defaults():
    settings = Settings()

    assert settings.deployment_mode == "local-dev"
    assert settings.url_expiration_seconds == 60
    assert settings.reprocess_days == 3
    assert settings.expiry_days == 3
    assert settings.max_file_size is None


def test_local_modes_point_at_mock_endpoint():
    settings = Settings(deployment_mode="aws-mock", sqs_queue_name="jobs.fifo")

    assert settings.aws_endpoint_url == "http://localhost:5000"
    assert settings.aws_access_key_id == "mock"
    assert settings.sqs_queue_url == "http://localhost:5000/queue/jobs.fifo"


def test_production_mode_keeps_real_endpoints():
    settings = Settings(deployment_mode="aws-prod")

    assert settings.aws_endpoint_url is None
    assert settings.sqs_queue_url is None


def test_legacy_mode_names_are_normalized():
    assert Settings(deployment_mode="local-mock").deployment_mode == "local-dev"
    assert Settings(deployment_mode="cloud").deployment_mode == "aws-prod"


def test_invalid_mode_is_rejected():
    with pytest.raises(ValidationError):
        Settings(deployment_mode="on-prem")


def test_url_expiration_must_be_positive():
    with pytest.raises(ValidationError):
        Settings(url_expiration_seconds=0)


def test_environment_overrides_defaults(monkeypatch):
    monkeypatch.setenv("DEPLOYMENT_MODE", "aws-prod")
    monkeypatch.setenv("S3_BUCKET_NAME", "prints")
    monkeypatch.setenv("FILE_BUCKET", "parts")
    monkeypatch.setenv("MAX_FILE_SIZE", "1048576")

    settings = get_settings()

    assert settings.deployment_mode == "aws-prod"
    assert settings.s3_bucket_name == "prints"
    assert settings.file_bucket == "parts"
    assert settings.max_file_size == 1048576
    assert get_settings() is settings
