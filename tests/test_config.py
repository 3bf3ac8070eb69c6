"""Configuration defaults, validation and environment loading."""

import pytest

from kudu import Config, Cors
from kudu.config import validate_addr


def test_defaults() -> None:
    config = Config()
    assert config.listen_address() == ("", 8080)
    assert config.max_multipart_memory == 32 << 20
    assert config.openapi.spec_path == "/openapi.json"
    assert config.access_log is True


@pytest.mark.parametrize(
    "addr,expected",
    [(":9000", ("", 9000)), ("localhost:80", ("localhost", 80)), ("[::1]:8443", ("::1", 8443))],
)
def test_validate_addr(addr: str, expected: tuple[str, int]) -> None:
    assert validate_addr(addr) == expected


@pytest.mark.parametrize("addr", ["8080", "host:http", "::1:80", "[::1]80", "host:70000"])
def test_invalid_addr(addr: str) -> None:
    with pytest.raises(ValueError):
        validate_addr(addr)


def test_invalid_settings_rejected() -> None:
    with pytest.raises(ValueError):
        Config(read_timeout=-1)
    with pytest.raises(ValueError):
        Config(max_multipart_memory=0)
    with pytest.raises(ValueError):
        Config(port=70000)


def test_port_overrides_addr() -> None:
    assert Config(addr="127.0.0.1:8080", port=9999).listen_address() == ("127.0.0.1", 9999)


def test_from_env() -> None:
    env = {
        "KUDU_ADDR": "0.0.0.0:7000",
        "KUDU_READ_TIMEOUT": "5s",
        "KUDU_WRITE_TIMEOUT": "250ms",
        "KUDU_IDLE_TIMEOUT": "2m",
        "KUDU_MAX_MULTIPART_MEMORY": "1024",
        "KUDU_STRICT_SLASH": "true",
        "KUDU_OPENAPI_DISABLED": "1",
        "KUDU_ACCESS_LOG": "off",
    }
    config = Config.from_env(environ=env, debug=True)
    assert config.listen_address() == ("0.0.0.0", 7000)
    assert config.read_timeout == 5.0
    assert config.write_timeout == 0.25
    assert config.idle_timeout == 120.0
    assert config.max_multipart_memory == 1024
    assert config.strict_slash is True
    assert config.openapi.enabled is False
    assert config.access_log is False
    assert config.debug is True


def test_from_env_rejects_garbage() -> None:
    with pytest.raises(ValueError, match="KUDU_PORT must be an integer"):
        Config.from_env(environ={"KUDU_PORT": "eighty"})
    with pytest.raises(ValueError, match="APP_DEBUG must be a boolean"):
        Config.from_env(prefix="APP_", environ={"APP_DEBUG": "maybe"})


def test_cors_allows() -> None:
    assert Cors().allows("https://anything.example")
    cors = Cors(allowed_origins=["https://a.example"])
    assert cors.allows("https://a.example")
    assert not cors.allows("https://b.example")
