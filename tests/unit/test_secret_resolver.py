import logging
import os
import pytest
from stackplan.errors import MissingSecretError
from stackplan.MANAGERS.secret_resolver import SecretResolver
from stackplan.MODELS.manifest import Manifest, Secret
from stackplan.MODELS.service_definition import Service


def _manifest(base_dir, secrets=None):
    if secrets is None:
        secrets = {
            "postgres_password": Secret(name="postgres_password", file="./POSTGRES_PASSWORD.txt",
                                        base_dir=str(base_dir)),
        }
    return Manifest(
        services={
            "backend": Service(name="backend", build={"context": "./backend"}, secrets=["postgres_password"]),
            "db": Service(name="db", image="postgres:13", secrets=["postgres_password"]),
        },
        secrets=secrets,
    )


def test_resolve(tmp_path):
    secret_file = tmp_path / "POSTGRES_PASSWORD.txt"
    secret_file.write_text("s3cret")
    os.chmod(secret_file, 0o600)

    resolved = SecretResolver().resolve(_manifest(tmp_path))
    assert resolved == {"postgres_password": str(secret_file)}


def test_missing_backing_file(tmp_path):
    with pytest.raises(MissingSecretError) as excinfo:
        SecretResolver().resolve(_manifest(tmp_path))
    assert excinfo.value.secret == "postgres_password"
    assert excinfo.value.path == "./POSTGRES_PASSWORD.txt"
    assert excinfo.value.services == ["backend", "db"]


def test_empty_backing_file(tmp_path):
    (tmp_path / "POSTGRES_PASSWORD.txt").write_text("")
    with pytest.raises(MissingSecretError) as excinfo:
        SecretResolver().resolve(_manifest(tmp_path))
    assert "is empty" in str(excinfo.value)


def test_directory_is_not_a_backing_file(tmp_path):
    (tmp_path / "POSTGRES_PASSWORD.txt").mkdir()
    with pytest.raises(MissingSecretError):
        SecretResolver().resolve(_manifest(tmp_path))


def test_undeclared_secret(tmp_path):
    with pytest.raises(MissingSecretError) as excinfo:
        SecretResolver().resolve(_manifest(tmp_path, secrets={}))
    assert excinfo.value.path is None
    assert "not declared" in str(excinfo.value)


def test_external_secret_is_skipped(tmp_path):
    secrets = {"postgres_password": Secret(name="postgres_password", external=True)}
    assert SecretResolver().resolve(_manifest(tmp_path, secrets=secrets)) == {}


def test_relative_path_without_base_dir_uses_resolver_dir(tmp_path):
    (tmp_path / "pw.txt").write_text("s3cret")
    secrets = {"postgres_password": Secret(name="postgres_password", file="pw.txt")}
    resolved = SecretResolver(str(tmp_path)).resolve(_manifest(tmp_path, secrets=secrets))
    assert resolved["postgres_password"] == str(tmp_path / "pw.txt")


def test_world_readable_file_warns(tmp_path, caplog):
    secret_file = tmp_path / "POSTGRES_PASSWORD.txt"
    secret_file.write_text("s3cret")
    os.chmod(secret_file, 0o644)
    with caplog.at_level(logging.WARNING):
        SecretResolver().resolve(_manifest(tmp_path))
    assert "world-readable" in caplog.text
