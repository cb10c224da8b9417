from __future__ import annotations

import pytest

from tattletale.capture_queue import OverflowPolicy
from tattletale.config import AppConfig
from tattletale.errors import ConfigError


def test_defaults():
    config = AppConfig.from_env({})

    assert config.port == 8080
    assert config.db_name == "tattletale.db"
    assert config.batch_threshold == 100
    assert config.queue_size == 0
    assert config.overflow is OverflowPolicy.BLOCK


def test_reads_environment():
    config = AppConfig.from_env(
        {
            "PORT": "9090",
            "DB_NAME": "/var/lib/tattletale/packets.db",
            "DEVICE_NAME": "enp18s0",
            "PACKET_FILTER": "tcp",
            "MIRROR_FILE": "output.pcap",
            "BATCH_THRESHOLD": "250",
            "QUEUE_SIZE": "10000",
            "QUEUE_OVERFLOW": "DROP_OLDEST",
        }
    )

    assert config.port == 9090
    assert config.db_name == "/var/lib/tattletale/packets.db"
    assert config.device_name == "enp18s0"
    assert config.filter_expression == "tcp"
    assert config.mirror_path == "output.pcap"
    assert config.batch_threshold == 250
    assert config.queue_size == 10_000
    assert config.overflow is OverflowPolicy.DROP_OLDEST


def test_empty_environment_values_are_ignored():
    assert AppConfig.from_env({"PORT": "", "DEVICE_NAME": ""}).port == 8080


def test_overrides_skip_none():
    config = AppConfig(device_name="eth0").with_overrides(device_name=None, port="8181")

    assert config.device_name == "eth0"
    assert config.port == 8181


@pytest.mark.parametrize(
    "environ",
    [
        {"PORT": "eighty"},
        {"PORT": "70000"},
        {"QUEUE_SIZE": "-1"},
        {"BATCH_THRESHOLD": "-5"},
        {"QUEUE_OVERFLOW": "explode"},
    ],
)
def test_invalid_values_raise(environ):
    with pytest.raises(ConfigError):
        AppConfig.from_env(environ)
