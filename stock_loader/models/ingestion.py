import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional, Union

from stock_loader.models.bulk_loader import BatchResult, BulkLoader, BulkLoadResult, BulkLoadSettings
from stock_loader.models.cluster import Cluster
from stock_loader.models.index_provisioner import DEFAULT_ALIAS_NAME, DEFAULT_INDEX_NAME, IndexProvisioner
from stock_loader.models.record_source import RecordSource
from stock_loader.models.stock_record import DEFAULT_COMPANY_NAMES

logger = logging.getLogger(__name__)


class IngestionOutcome(str, Enum):
    completed = "completed"
    skipped = "skipped"
    incomplete = "incomplete"


@dataclass
class IngestionResult:
    outcome: IngestionOutcome
    index_name: str
    alias_name: str
    documents_written: int = 0
    malformed_lines: int = 0
    source_truncated: bool = False
    alias_published: bool = False
    load: Optional[BulkLoadResult] = None

    @property
    def success(self) -> bool:
        if self.outcome == IngestionOutcome.skipped:
            return self.alias_published
        return self.outcome != IngestionOutcome.incomplete

    def __str__(self):
        if self.outcome == IngestionOutcome.skipped:
            message = f"Index '{self.index_name}' already exists; nothing was loaded."
            if self.alias_published:
                return f"{message}\nAlias '{self.alias_name}' is ready."
            return (f"{message}\nAlias '{self.alias_name}' does not point to it, so an earlier load did not "
                    f"finish. Reset the index before re-running.")
        lines = [f"Ingestion into '{self.index_name}' {self.outcome.value}.",
                 f"Documents written: {self.documents_written}",
                 f"Malformed lines skipped: {self.malformed_lines}"]
        if self.load is not None:
            lines.append(f"Batches: {self.load.confirmed_batches} confirmed, {self.load.failed_batches} failed, "
                         f"{self.load.pending_batches} pending")
            lines.extend(str(failure) for failure in self.load.failures)
            if self.load.timeout is not None:
                lines.append(str(self.load.timeout))
        if self.source_truncated:
            lines.append("The source file could not be read to the end.")
        if self.alias_published:
            lines.append(f"Alias '{self.alias_name}' is ready.")
        else:
            lines.append(f"Alias '{self.alias_name}' was not published.")
        return "\n".join(lines)


class IngestionPipeline:
    """
    Runs one ingestion: open the CSV file, create the index if it is missing, load the file into
    it, then publish the alias. The steps are strictly ordered, and an index that already exists
    short-circuits the whole run so re-running is a no-op; such a run only counts as a success when
    the alias already points at the index. The alias is only published after a complete load, so
    readers never see a partially loaded index.

    ProvisionError and SourceUnavailable propagate to the caller; an incomplete load does not.
    """

    def __init__(self, cluster: Cluster, source_file: Union[str, Path],
                 index_name: str = DEFAULT_INDEX_NAME, alias_name: str = DEFAULT_ALIAS_NAME,
                 bulk_settings: Optional[BulkLoadSettings] = None,
                 company_names: Mapping[str, str] = DEFAULT_COMPANY_NAMES,
                 skip_header: bool = False) -> None:
        self.source_file = source_file
        self.index_name = index_name
        self.alias_name = alias_name
        self.company_names = company_names
        self.skip_header = skip_header
        self.provisioner = IndexProvisioner(cluster)
        self.loader = BulkLoader(cluster, bulk_settings)

    def run(self, on_progress: Optional[Callable[[BatchResult], None]] = None) -> IngestionResult:
        # Opened before the cluster is touched; a missing file must not leave an empty index
        with RecordSource(self.source_file, company_names=self.company_names,
                          skip_header=self.skip_header) as source:
            if not self.provisioner.create_if_absent(self.index_name):
                return self._skipped()
            load = self.loader.load(source, self.index_name, on_progress=on_progress,
                                    on_complete=lambda r: logger.info(f"Data indexed into '{self.index_name}'"))

        result = IngestionResult(IngestionOutcome.incomplete, self.index_name, self.alias_name,
                                 documents_written=load.documents_written,
                                 malformed_lines=source.malformed_lines,
                                 source_truncated=source.truncated,
                                 load=load)
        if not load.success or source.truncated:
            logger.error(f"Ingestion into '{self.index_name}' is incomplete; alias '{self.alias_name}' "
                         f"will not be published")
            return result

        self.provisioner.refresh(self.index_name)
        self.provisioner.publish_alias(self.index_name, self.alias_name)
        result.outcome = IngestionOutcome.completed
        result.alias_published = True
        return result

    def _skipped(self) -> IngestionResult:
        alias_ready = self.index_name in self.provisioner.alias_targets(self.alias_name)
        if alias_ready:
            logger.info(f"Skipping ingestion since '{self.index_name}' already exists")
        else:
            logger.error(f"Index '{self.index_name}' already exists but alias '{self.alias_name}' does not "
                         f"point to it; skipping ingestion")
        return IngestionResult(IngestionOutcome.skipped, self.index_name, self.alias_name,
                               alias_published=alias_ready)
