import pytest

from db_backup.config import ConfigError, build_services, load_config

BASE_ENV = {
    "BACKUP_DATABASE_URLS": "postgresql://a@h/billing,postgresql://a@h/auth,postgresql://a@h/misc",
    "SERVICE_NAMES": "billing,auth",
    "AWS_S3_BUCKET": "backups",
    "AWS_S3_REGION": "eu-west-1",
    "AWS_S3_ENDPOINT": "https://s3.example.com",
    "AWS_ACCESS_KEY_ID": "AKIA",
    "AWS_SECRET_ACCESS_KEY": "secret",
}


def test_load_from_environment():
    config = load_config(environ=BASE_ENV)

    assert [service.name for service in config.services] == ["billing", "auth", "3"]
    assert config.services[0].connection_string == "postgresql://a@h/billing"
    assert config.storage.bucket == "backups"
    assert config.storage.region == "eu-west-1"
    assert config.storage.endpoint == "https://s3.example.com"
    assert config.storage.force_path_style is False
    assert config.dump_options == ()


def test_config_is_immutable():
    config = load_config(environ=BASE_ENV)
    with pytest.raises(AttributeError):
        config.storage.bucket = "other"


def test_build_services_pairs_by_position():
    services = build_services("u1,u2,u3", "x,,z")
    assert [service.name for service in services] == ["x", "2", "z"]


def test_missing_urls_is_an_error():
    env = dict(BASE_ENV, BACKUP_DATABASE_URLS="")
    with pytest.raises(ConfigError):
        load_config(environ=env)


def test_missing_bucket_is_an_error():
    env = {key: value for key, value in BASE_ENV.items() if key != "AWS_S3_BUCKET"}
    with pytest.raises(ConfigError):
        load_config(environ=env)


def test_credentials_must_come_in_pairs():
    env = {key: value for key, value in BASE_ENV.items() if key != "AWS_SECRET_ACCESS_KEY"}
    with pytest.raises(ConfigError):
        load_config(environ=env)


def test_optional_settings():
    env = dict(
        BASE_ENV,
        AWS_S3_FORCE_PATH_STYLE="true",
        BACKUP_OPTIONS="--no-owner --exclude-table='audit log'",
        BUCKET_SUBFOLDER="/nightly/",
    )
    config = load_config(environ=env)

    assert config.storage.force_path_style is True
    assert config.storage.subfolder == "nightly"
    assert config.dump_options == ("--no-owner", "--exclude-table=audit log")


def test_invalid_boolean():
    env = dict(BASE_ENV, AWS_S3_FORCE_PATH_STYLE="maybe")
    with pytest.raises(ConfigError):
        load_config(environ=env)


def test_yaml_file_with_environment_override(tmp_path):
    path = tmp_path / "backup.yaml"
    path.write_text(
        "databases:\n"
        "  - name: billing\n"
        "    url: postgresql://a@h/billing\n"
        "  - url: postgresql://a@h/other\n"
        "storage:\n"
        "  bucket: from-file\n"
        "  region: us-east-1\n"
        "dump_options: --no-owner\n",
        encoding="utf-8",
    )

    config = load_config(path, environ={})
    assert [service.name for service in config.services] == ["billing", "2"]
    assert config.storage.bucket == "from-file"
    assert config.dump_options == ("--no-owner",)

    config = load_config(path, environ={"AWS_S3_BUCKET": "from-env"})
    assert config.storage.bucket == "from-env"
    assert config.storage.region == "us-east-1"


def test_yaml_file_must_exist(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.yaml", environ=BASE_ENV)


def test_yaml_entries_need_url(tmp_path):
    path = tmp_path / "backup.yaml"
    path.write_text("databases:\n  - name: billing\nstorage:\n  bucket: b\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path, environ={})


def test_yaml_storage_must_be_a_mapping(tmp_path):
    path = tmp_path / "backup.yaml"
    path.write_text("databases:\n  - url: postgresql://db/a\nstorage: backups\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="storage"):
        load_config(path, environ={})


def test_yaml_dump_options_must_be_string_or_list(tmp_path):
    path = tmp_path / "backup.yaml"
    path.write_text(
        "databases:\n  - url: postgresql://db/a\nstorage:\n  bucket: b\ndump_options: 5\n",
        encoding="utf-8",
    )
    with pytest.raises(ConfigError, match="dump_options"):
        load_config(path, environ={})
