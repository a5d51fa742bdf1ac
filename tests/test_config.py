import pytest

from daclhound.config import CollectorConfig, LDAPConfig, PipelineConfig, get_config, set_config


def test_defaults():
    config = CollectorConfig()

    assert config.ldap.page_size == 1000
    assert config.ldap.sd_flags == 0x05
    assert config.pipeline.put_timeout == 0.5
    assert config.verbose and not config.debug


def test_pipeline_sizing_from_environment(monkeypatch):
    monkeypatch.setenv("DACLHOUND_QUEUE_CAPACITY", "16")
    monkeypatch.setenv("DACLHOUND_WORKERS", "2")

    pipeline = PipelineConfig()

    assert pipeline.queue_capacity == 16
    assert pipeline.worker_count == 2


def test_explicit_values_override_environment(monkeypatch):
    monkeypatch.setenv("DACLHOUND_WORKERS", "2")

    assert PipelineConfig(worker_count=12).worker_count == 12


@pytest.mark.parametrize("kwargs", [
    {"queue_capacity": 0},
    {"worker_count": -1},
    {"put_timeout": 0},
])
def test_non_positive_sizing_rejected(kwargs):
    with pytest.raises(ValueError):
        PipelineConfig(**kwargs)


def test_dict_round_trip():
    config = CollectorConfig.from_dict({
        "ldap": {"page_size": 250},
        "pipeline": {"queue_capacity": 10, "worker_count": 3},
        "debug": True,
    })

    assert config.ldap == LDAPConfig(page_size=250)
    assert config.pipeline.queue_capacity == 10
    assert config.debug

    data = config.to_dict()
    assert data["pipeline"]["worker_count"] == 3
    assert CollectorConfig.from_dict(data) == config


def test_global_config_can_be_replaced():
    custom = CollectorConfig(verbose=False)

    set_config(custom)

    assert get_config() is custom
