import json
import pathlib
from unittest.mock import MagicMock

import pytest
import requests
import yaml

import stock_loader.middleware.clusters as clusters_
import stock_loader.middleware.ingest as ingest_
import stock_loader.middleware.queries as queries_
from stock_loader.environment import Environment
from stock_loader.models.index_provisioner import ProvisionError
from stock_loader.models.ingestion import IngestionOutcome, IngestionPipeline, IngestionResult
from stock_loader.models.record_source import SourceUnavailable
from stock_loader.models.stock_queries import QueryError, StockQueries
from stock_loader.models.utils import ExitCode

TEST_DATA_DIRECTORY = pathlib.Path(__file__).parent / "data"
VALID_SERVICES_YAML = TEST_DATA_DIRECTORY / "services.yaml"


@pytest.fixture
def env():
    return Environment(VALID_SERVICES_YAML)


def test_connection_check_reports_version(requests_mock, env):
    requests_mock.get(f"{env.target_cluster.endpoint}/", json={"version": {"number": "2.15.0"}})
    result = clusters_.connection_check(env.target_cluster)
    assert result.connection_established
    assert result.cluster_version == "2.15.0"
    assert "Cluster version: 2.15.0" in str(result)


def test_connection_check_reports_failure(requests_mock, env):
    requests_mock.get(f"{env.target_cluster.endpoint}/", exc=requests.exceptions.ConnectionError("refused"))
    result = clusters_.connection_check(env.target_cluster)
    assert not result.connection_established
    assert result.cluster_version is None
    assert "Unable to connect to cluster with error" in result.connection_message


def test_run_ingest_success(mocker, env):
    result = IngestionResult(IngestionOutcome.completed, "stock-demo-v1", "stock-demo", documents_written=5,
                             alias_published=True)
    mocker.patch.object(IngestionPipeline, "run", return_value=result)

    exitcode, message = ingest_.run(env.target_cluster, env.ingest, env.company_names)

    assert exitcode == ExitCode.SUCCESS
    assert "Ingestion into 'stock-demo-v1' completed." in message
    assert "Alias 'stock-demo' is ready." in message


def test_run_ingest_skipped_is_a_success(mocker, env):
    mocker.patch.object(IngestionPipeline, "run",
                        return_value=IngestionResult(IngestionOutcome.skipped, "stock-demo-v1", "stock-demo",
                                                     alias_published=True))
    exitcode, message = ingest_.run(env.target_cluster, env.ingest, env.company_names)
    assert exitcode == ExitCode.SUCCESS
    assert "already exists" in message


def test_run_ingest_skipped_without_alias_is_a_failure(mocker, env):
    mocker.patch.object(IngestionPipeline, "run",
                        return_value=IngestionResult(IngestionOutcome.skipped, "stock-demo-v1", "stock-demo"))
    exitcode, message = ingest_.run(env.target_cluster, env.ingest, env.company_names)
    assert exitcode == ExitCode.FAILURE
    assert "Reset the index before re-running." in message


def test_run_ingest_incomplete_is_a_failure(mocker, env):
    mocker.patch.object(IngestionPipeline, "run",
                        return_value=IngestionResult(IngestionOutcome.incomplete, "stock-demo-v1", "stock-demo"))
    exitcode, message = ingest_.run(env.target_cluster, env.ingest, env.company_names)
    assert exitcode == ExitCode.FAILURE
    assert "was not published" in message


def test_run_ingest_reports_provisioning_stage(mocker, env):
    mocker.patch.object(IngestionPipeline, "run", side_effect=ProvisionError("Creation refused", "stock-demo-v1"))
    exitcode, message = ingest_.run(env.target_cluster, env.ingest, env.company_names)
    assert exitcode == ExitCode.FAILURE
    assert message.startswith("Provisioning stage failed")


def test_run_ingest_reports_source_stage(mocker, env):
    mocker.patch.object(IngestionPipeline, "run",
                        side_effect=SourceUnavailable("/data/missing.csv", "No such file or directory"))
    exitcode, message = ingest_.run(env.target_cluster, env.ingest, env.company_names)
    assert exitcode == ExitCode.FAILURE
    assert message.startswith("Source stage failed")
    assert "Nothing was sent to the cluster." in message


def test_run_ingest_unexpected_error_is_reported(mocker, env):
    mocker.patch.object(IngestionPipeline, "run", side_effect=RuntimeError("boom"))
    exitcode, message = ingest_.run(env.target_cluster, env.ingest, env.company_names)
    assert exitcode == ExitCode.FAILURE
    assert message == "Failure on run for ingest: RuntimeError boom"


def test_provision_and_reset(requests_mock, env):
    endpoint = env.target_cluster.endpoint
    requests_mock.head(f"{endpoint}/stock-demo-v1", status_code=404)
    requests_mock.put(f"{endpoint}/stock-demo-v1", json={"acknowledged": True})
    requests_mock.delete(f"{endpoint}/stock-demo-v1", json={"acknowledged": True})

    assert ingest_.provision(env.target_cluster, env.ingest) == (ExitCode.SUCCESS, "Created index 'stock-demo-v1'.")
    assert ingest_.reset(env.target_cluster, env.ingest) == (ExitCode.SUCCESS, "Deleted index 'stock-demo-v1'.")


def test_status_as_json(requests_mock, env):
    endpoint = env.target_cluster.endpoint
    requests_mock.head(f"{endpoint}/stock-demo-v1", status_code=200)
    requests_mock.get(f"{endpoint}/_alias/stock-demo", json={"stock-demo-v1": {"aliases": {"stock-demo": {}}}})
    requests_mock.get(f"{endpoint}/stock-demo-v1/_count", json={"count": 5})

    exitcode, message = ingest_.status(env.target_cluster, env.ingest, as_json=True)

    assert exitcode == ExitCode.SUCCESS
    assert json.loads(message) == {
        "index": "stock-demo-v1",
        "index_exists": True,
        "document_count": 5,
        "alias": "stock-demo",
        "alias_ready": True,
        "alias_targets": ["stock-demo-v1"],
    }


def test_status_before_provisioning(requests_mock, env):
    endpoint = env.target_cluster.endpoint
    requests_mock.head(f"{endpoint}/stock-demo-v1", status_code=404)
    requests_mock.get(f"{endpoint}/_alias/stock-demo", status_code=404)

    exitcode, message = ingest_.status(env.target_cluster, env.ingest)

    status = yaml.safe_load(message)
    assert status["index_exists"] is False
    assert status["document_count"] is None
    assert status["alias_ready"] is False


def test_query_middleware_renders_yaml_and_json():
    queries = MagicMock(spec=StockQueries)
    queries.index_name = "stock-demo"
    queries.count.return_value = 5
    queries.monthly_volume.return_value = [("2013-02-01", 17289500)]

    assert queries_.count(queries) == (ExitCode.SUCCESS, "index: stock-demo\ncount: 5\n")
    exitcode, message = queries_.monthly_volume(queries, "AAL", as_json=True)
    assert json.loads(message) == [{"month": "2013-02-01", "volume": 17289500}]


def test_query_middleware_reports_failures():
    queries = MagicMock(spec=StockQueries)
    queries.symbols.side_effect = QueryError("Request to /stock-demo/_search failed")
    exitcode, message = queries_.symbols(queries, as_json=True)
    assert exitcode == ExitCode.FAILURE
    assert message == "Failure on list symbols: QueryError Request to /stock-demo/_search failed"
