import logging
from typing import Callable, Dict, Mapping, Optional, Tuple

from stock_loader.middleware.error_handler import handle_errors
from stock_loader.middleware.json_support import support_json_return
from stock_loader.models.bulk_loader import BatchResult
from stock_loader.models.cluster import Cluster
from stock_loader.models.command_result import CommandResult
from stock_loader.models.index_provisioner import IndexProvisioner, ProvisionError
from stock_loader.models.ingest_config import IngestConfig
from stock_loader.models.ingestion import IngestionResult
from stock_loader.models.record_source import SourceUnavailable
from stock_loader.models.stock_queries import QueryError, StockQueries
from stock_loader.models.utils import ExitCode

logger = logging.getLogger(__name__)


@handle_errors("ingest")
def run(cluster: Cluster, ingest: IngestConfig, company_names: Mapping[str, str],
        on_progress: Optional[Callable[[BatchResult], None]] = None) -> CommandResult[IngestionResult | str]:
    logger.info(f"Running ingestion with config:\n{ingest}")
    pipeline = ingest.build_pipeline(cluster, company_names)
    try:
        result = pipeline.run(on_progress=on_progress)
    except ProvisionError as e:
        logger.error(f"Provisioning failed, nothing was ingested: {e}")
        return CommandResult(success=False, value=f"Provisioning stage failed: {e}")
    except SourceUnavailable as e:
        logger.error(f"Source file unavailable: {e}")
        return CommandResult(success=False, value=f"Source stage failed: {e}\n"
                                                  f"Nothing was sent to the cluster.")
    return CommandResult(success=result.success, value=result)


@handle_errors("ingest")
def provision(cluster: Cluster, ingest: IngestConfig) -> CommandResult[str]:
    created = IndexProvisioner(cluster).create_if_absent(ingest.index_name)
    if created:
        return CommandResult(success=True, value=f"Created index '{ingest.index_name}'.")
    return CommandResult(success=True, value=f"Index '{ingest.index_name}' already exists.")


@handle_errors("ingest")
def reset(cluster: Cluster, ingest: IngestConfig) -> CommandResult[str]:
    deleted = IndexProvisioner(cluster).delete(ingest.index_name)
    if deleted:
        return CommandResult(success=True, value=f"Deleted index '{ingest.index_name}'.")
    return CommandResult(success=True, value=f"Index '{ingest.index_name}' does not exist.")


@support_json_return()
def status(cluster: Cluster, ingest: IngestConfig) -> Tuple[ExitCode, Dict | str]:
    provisioner = IndexProvisioner(cluster)
    try:
        exists = provisioner.exists(ingest.index_name)
        alias_targets = provisioner.alias_targets(ingest.alias_name)
        document_count = StockQueries(cluster, ingest.index_name).count() if exists else None
    except (ProvisionError, QueryError) as e:
        logger.error(f"Failed to get ingest status: {e}")
        return ExitCode.FAILURE, f"Failure on status for ingest: {type(e).__name__} {e}"
    return ExitCode.SUCCESS, {
        "index": ingest.index_name,
        "index_exists": exists,
        "document_count": document_count,
        "alias": ingest.alias_name,
        "alias_ready": ingest.index_name in alias_targets,
        "alias_targets": alias_targets,
    }
