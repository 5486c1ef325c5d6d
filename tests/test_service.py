import json

import pytest
from conftest import SUMMER_MIDNIGHT, FailingStore

from hubble import refresh
from hubble.cache import PushCache
from hubble.config import load_config
from hubble.errors import UnknownBodyError
from hubble.protocol import PROTOCOL_V1, decode_body_package, encode_request
from hubble.service import HubbleService
from hubble.timeline import CommandQueue


@pytest.fixture
def service(ephemeris, sink, clock):
    return HubbleService(ephemeris, sink, clock=clock)


def test_refresh_without_observer_is_negative(service, sink):
    assert service.refresh(None) == -1
    assert sink.commands == []


def test_refresh_returns_upsert_count(service, sink, observer):
    count = service.refresh(observer, SUMMER_MIDNIGHT)
    assert count > 0
    assert count == len(sink.ids("upsert"))


def test_body_request(service, observer):
    data = service.handle_body_request({"REQUEST_BODY": 9}, observer, SUMMER_MIDNIGHT)
    assert len(data) == 8
    assert decode_body_package(data).body_id == 9


def test_body_request_legacy_layout(service, observer):
    service.protocol_version = PROTOCOL_V1
    data = service.handle_body_request(encode_request(0), observer, SUMMER_MIDNIGHT)
    assert len(data) == 7


@pytest.mark.parametrize("payload", [None, {}, {"REQUEST_BODY": "nine"}])
def test_body_request_without_id(service, observer, payload):
    assert service.handle_body_request(payload, observer) is None


def test_body_request_without_observer(service):
    assert service.handle_body_request({"REQUEST_BODY": 0}, None) is None


def test_unknown_body_is_a_hard_failure(service, observer):
    with pytest.raises(UnknownBodyError):
        service.handle_body_request({"REQUEST_BODY": 99}, observer)


@pytest.fixture
def env(monkeypatch, tmp_path):
    for name in (
        "HUBBLE_TIMELINE_URL",
        "HUBBLE_TIMELINE_TOKEN",
        "HUBBLE_PUSH_CACHE_FILE",
        "HUBBLE_CACHE_MINUTES",
    ):
        # setenv first so values loaded from .env files are undone too
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.setenv("HUBBLE_DATA_DIR", str(tmp_path))
    return monkeypatch


def test_load_config_defaults(env, tmp_path):
    config = load_config(tmp_path / "missing.env")
    assert config.timeline_url == "https://timeline-api.rebble.io"
    assert config.timeline_token is None
    assert config.push_cache_file is None
    assert config.cache_minutes == 30.0
    assert config.data_dir == tmp_path


def test_load_config_reads_env_file(env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "HUBBLE_TIMELINE_TOKEN=abc\nHUBBLE_CACHE_MINUTES=5\nHUBBLE_TIMELINE_URL=http://x/\n"
    )
    config = load_config(env_file)
    assert config.timeline_token == "abc"
    assert config.cache_minutes == 5.0
    assert config.timeline_url == "http://x"


def test_from_config_without_token_has_no_dispatcher(env, tmp_path):
    service = HubbleService.from_config(load_config(tmp_path / "missing.env"))
    assert isinstance(service.sink, CommandQueue)
    assert service.dispatcher is None


def test_from_config_with_token_builds_dispatcher(env, tmp_path):
    env.setenv("HUBBLE_TIMELINE_TOKEN", "abc")
    env.setenv("HUBBLE_PUSH_CACHE_FILE", str(tmp_path / "push.json"))
    service = HubbleService.from_config(load_config(tmp_path / "missing.env"))
    assert service.dispatcher is not None


def test_cli_parser():
    args = refresh.build_parser().parse_args(
        ["sync", "--lat", "40.7", "--lon", "-74", "--dry-run", "--tz", "America/New_York"]
    )
    assert args.func is refresh._cmd_sync
    assert args.dry_run
    assert not args.test_pin
    assert refresh._observer(args).timezone == "America/New_York"

    with pytest.raises(SystemExit):
        refresh.build_parser().parse_args(["body", "--lat", "1", "--lon", "2"])


def test_cli_dry_run_prints_commands(env, monkeypatch, capsys, ephemeris, clock, tmp_path):
    def from_config(config, sink=None, **kwargs):
        return HubbleService(ephemeris, sink, clock=clock)

    monkeypatch.setattr(HubbleService, "from_config", staticmethod(from_config))
    settings = tmp_path / "settings.json"
    settings.write_text(json.dumps({"CFG_MOON_RISE_SET": False}))

    code = refresh.main(
        [
            "--env-file", str(tmp_path / "missing.env"),
            "sync", "--lat", "40", "--lon", "-74", "--tz", "America/New_York",
            "--settings", str(settings), "--dry-run", "--test-pin",
        ]
    )  # fmt: skip
    assert code == 0
    lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    assert lines[0]["id"] == "00-00-test"
    ids = {line["id"] for line in lines}
    assert "sun-rise0" in ids
    assert "moon-rise0" not in ids
    assert all(line["op"] == "upsert" for line in lines)


def test_cli_sync_without_token_fails(env, tmp_path):
    code = refresh.main(
        ["--env-file", str(tmp_path / "missing.env"), "sync", "--lat", "40", "--lon", "-74"]
    )
    assert code == 2


def test_refresh_survives_push_cache_write_failure(ephemeris, sink, clock, observer, caplog):
    push_cache = PushCache(clock=clock, store=FailingStore())
    service = HubbleService(ephemeris, sink, push_cache=push_cache, clock=clock)
    count = service.refresh(observer, SUMMER_MIDNIGHT)
    assert count > 0
    assert count == len(sink.ids("upsert"))
    assert push_cache.last_push_at is not None
    assert "Could not persist push cache" in caplog.text


@pytest.mark.parametrize("body_id", ["99", "-1"])
def test_cli_body_with_unknown_id_fails(env, tmp_path, caplog, body_id):
    code = refresh.main(
        [
            "--env-file",
            str(tmp_path / "missing.env"),
            "body",
            "--id",
            body_id,
            "--lat",
            "40",
            "--lon",
            "-74",
        ]
    )
    assert code == 2
    assert "Unknown body id" in caplog.text
