import pathlib

import pytest

from stock_loader.environment import Environment
from stock_loader.models.cluster import AuthMethod, Cluster
from stock_loader.models.ingest_config import IngestConfig
from stock_loader.models.stock_record import DEFAULT_COMPANY_NAMES

TEST_DATA_DIRECTORY = pathlib.Path(__file__).parent / "data"
VALID_SERVICES_YAML = TEST_DATA_DIRECTORY / "services.yaml"


def create_file_in_tmp_path(tmp_path, file_name, content):
    file_path = tmp_path / file_name
    file_path.write_text(content)
    return file_path


def test_valid_services_yaml_to_environment_succeeds():
    env = Environment(VALID_SERVICES_YAML)
    assert isinstance(env.target_cluster, Cluster)
    assert env.target_cluster.auth_type == AuthMethod.BASIC_AUTH
    assert isinstance(env.ingest, IngestConfig)
    assert env.ingest.skip_header is True
    assert env.ingest.bulk_settings.batch_size == 2
    assert env.ingest.bulk_settings.retry_backoff_seconds == 0
    assert dict(env.company_names) == {"AAL": "American Airlines Group Inc", "MSFT": "Microsoft Corporation"}


MINIMAL_YAML = """
target_cluster:
  endpoint: http://endpoint.com
  no_auth:
"""


def test_minimal_services_yaml_to_environment_works(tmp_path):
    env = Environment(create_file_in_tmp_path(tmp_path, "minimal.yaml", MINIMAL_YAML))
    assert isinstance(env.target_cluster, Cluster)
    assert env.ingest is None
    assert env.company_names is DEFAULT_COMPANY_NAMES


def test_empty_services_yaml_has_nothing_defined(tmp_path):
    env = Environment(create_file_in_tmp_path(tmp_path, "empty.yaml", ""))
    assert env.target_cluster is None
    assert env.ingest is None


INVALID_YAML = """
target_cluster:
  endpoint: http://endpoint.com
  no_auth:
made_up_field:
"""


def test_invalid_services_yaml_to_environment_fails(tmp_path):
    with pytest.raises(ValueError) as excinfo:
        Environment(create_file_in_tmp_path(tmp_path, "invalid.yaml", INVALID_YAML))
    assert "Invalid config file" in excinfo.value.args[0]
    assert "made_up_field" in excinfo.value.args[1]


def test_environment_from_config_dict():
    env = Environment(config={
        "target_cluster": {"endpoint": "http://endpoint.com", "no_auth": None},
        "ingest": {"source_file": "/data/all_stocks_5yr.csv"},
    })
    assert env.ingest.index_name == "stock-demo-v1"
    assert env.ingest.alias_name == "stock-demo"
    assert env.ingest.skip_header is False
    assert env.ingest.bulk_settings.batch_size == 1000


def test_environment_requires_a_config():
    with pytest.raises(ValueError):
        Environment()


def test_invalid_company_names_refused():
    with pytest.raises(ValueError):
        Environment(config={"company_names": {"AAL": 42}})


def test_invalid_bulk_settings_refused():
    with pytest.raises(ValueError) as excinfo:
        Environment(config={"ingest": {"source_file": "stocks.csv", "bulk": {"batch_size": 0}}})
    assert "Invalid config file for ingest" in excinfo.value.args[0]


def test_ingest_overrides_route_bulk_options():
    env = Environment(VALID_SERVICES_YAML)
    overridden = env.ingest.with_overrides(source_file="/tmp/other.csv", batch_size=500,
                                           max_concurrent_batches=None)
    assert overridden.source_file == "/tmp/other.csv"
    assert overridden.bulk_settings.batch_size == 500
    assert overridden.bulk_settings.max_concurrent_batches == 2
    assert env.ingest.bulk_settings.batch_size == 2
