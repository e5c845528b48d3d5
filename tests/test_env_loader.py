import os

from app.core.env_loader import load_env_file, parse_env_lines


def test_parse_env_lines():
    values = parse_env_lines(
        [
            "# comment",
            "",
            "RNG_DATA_DIR=/tmp/rng",
            "export RNG_STORAGE_BACKEND='mariadb'",
            'MARIADB_PASSWORD="secret=1"',
            "not a pair",
            "=orphan",
        ]
    )
    assert values == {
        "RNG_DATA_DIR": "/tmp/rng",
        "RNG_STORAGE_BACKEND": "mariadb",
        "MARIADB_PASSWORD": "secret=1",
    }


def test_load_env_file_keeps_existing_values(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("RNG_TEST_NEW=1\nRNG_TEST_EXISTING=from-file\n")
    monkeypatch.setenv("RNG_TEST_EXISTING", "from-env")
    monkeypatch.delenv("RNG_TEST_NEW", raising=False)

    assert load_env_file(env_file) == 1
    assert os.environ["RNG_TEST_NEW"] == "1"
    assert os.environ["RNG_TEST_EXISTING"] == "from-env"
    monkeypatch.delenv("RNG_TEST_NEW")


def test_env_file_override_and_missing_file(tmp_path, monkeypatch):
    monkeypatch.setenv("RNG_ENV_FILE", str(tmp_path / "missing.env"))
    assert load_env_file() == 0

    env_file = tmp_path / "custom.env"
    env_file.write_text("RNG_TEST_CUSTOM=yes\n")
    monkeypatch.setenv("RNG_ENV_FILE", str(env_file))
    monkeypatch.delenv("RNG_TEST_CUSTOM", raising=False)
    assert load_env_file() == 1
    monkeypatch.delenv("RNG_TEST_CUSTOM")
