import json
import logging

import click

import stock_loader.middleware.clusters as clusters_
import stock_loader.middleware.ingest as ingest_
import stock_loader.middleware.queries as queries_
from stock_loader.environment import Environment
from stock_loader.models.stock_queries import QueryError, StockQueries
from stock_loader.models.utils import ExitCode

logger = logging.getLogger(__name__)

# ################### UNIVERSAL ####################


class Context(object):
    def __init__(self, config_file) -> None:
        self.config_file = config_file
        try:
            self.env = Environment(config_file)
        except Exception as e:
            raise click.ClickException(str(e))
        self.json = False


@click.group()
@click.option("--config-file", default="/config/stock_loader.yaml", help="Path to config file")
@click.option("--json", is_flag=True)
@click.option('-v', '--verbose', count=True, help="Verbosity level. Default is warn, -v is info, -vv is debug.")
@click.pass_context
def cli(ctx, config_file, json, verbose):
    logging.basicConfig(level=logging.WARN - (10 * verbose))
    logger.info(f"Logging set to {logging.getLevelName(logger.getEffectiveLevel())}")
    ctx.obj = Context(config_file)
    ctx.obj.json = json


def _echo_result(exitcode: ExitCode, message: str) -> None:
    if exitcode != ExitCode.SUCCESS:
        raise click.ClickException(message)
    click.echo(message)


# ##################### CLUSTERS ###################


@cli.group(name="clusters", help="Commands to interact with the target cluster")
@click.pass_obj
def cluster_group(ctx):
    if ctx.env.target_cluster is None:
        raise click.UsageError("Target cluster is not defined.")


@cluster_group.command(name="connection-check")
@click.pass_obj
def connection_check_cmd(ctx):
    """Checks if a connection can be established to the target cluster"""
    result = clusters_.connection_check(ctx.env.target_cluster)
    if ctx.json:
        click.echo(json.dumps(result.__dict__))
        return
    click.echo(str(result))
    if not result.connection_established:
        raise click.exceptions.Exit(ExitCode.FAILURE.value)


# ##################### INGEST ###################


@cli.group(name="ingest", help="Commands to load the stock data file into the target cluster")
@click.pass_obj
def ingest_group(ctx):
    if ctx.env.target_cluster is None:
        raise click.UsageError("Target cluster is not defined.")
    if ctx.env.ingest is None:
        raise click.UsageError("Ingest is not set in the services yaml.")


@ingest_group.command(name="run")
@click.option("--source-file", default=None, help="Override the CSV file to load")
@click.option("--batch-size", type=click.IntRange(min=1), default=None, help="Documents per bulk request")
@click.option("--max-concurrent-batches", type=click.IntRange(min=1), default=None,
              help="Bulk requests allowed in flight at once")
@click.pass_obj
def run_ingest_cmd(ctx, source_file, batch_size, max_concurrent_batches):
    """Create the index if missing, load the source file into it, then publish the alias"""
    ingest = ctx.env.ingest.with_overrides(source_file=source_file, batch_size=batch_size,
                                           max_concurrent_batches=max_concurrent_batches)

    def report_progress(batch_result):
        if batch_result.success:
            logger.info(f"Batch {batch_result.batch_number} confirmed ({batch_result.document_count} documents, "
                        f"{batch_result.attempts} attempt(s))")
        else:
            click.echo(f"Batch {batch_result.batch_number} failed: {batch_result.error.reason}", err=True)

    exitcode, message = ingest_.run(ctx.env.target_cluster, ingest, ctx.env.company_names,
                                    on_progress=report_progress)
    _echo_result(exitcode, message)


@ingest_group.command(name="provision")
@click.pass_obj
def provision_ingest_cmd(ctx):
    """Create the index with its mappings without loading any data"""
    exitcode, message = ingest_.provision(ctx.env.target_cluster, ctx.env.ingest)
    _echo_result(exitcode, message)


@ingest_group.command(name="status")
@click.pass_obj
def status_ingest_cmd(ctx):
    """Show whether the index exists, how many documents it holds and where the alias points"""
    exitcode, message = ingest_.status(ctx.env.target_cluster, ctx.env.ingest, as_json=ctx.json)
    _echo_result(exitcode, message)


@ingest_group.command(name="reset")
@click.option("--acknowledge-risk", is_flag=True, show_default=True, default=False,
              help="Flag to acknowledge risk and skip confirmation")
@click.pass_obj
def reset_ingest_cmd(ctx, acknowledge_risk):
    """[Caution] Delete the versioned index so the next run loads it again"""
    index_name = ctx.env.ingest.index_name
    if not acknowledge_risk and not click.confirm(f"Deleting index '{index_name}' WILL remove all of its documents. "
                                                  f"Are you sure you want to continue?"):
        click.echo("Aborting command.")
        return
    exitcode, message = ingest_.reset(ctx.env.target_cluster, ctx.env.ingest)
    _echo_result(exitcode, message)


# ##################### QUERY ###################


@cli.group(name="query", help="Example searches against the loaded stock data")
@click.option("--index", default=None, help="Index or alias to query, defaults to the ingest alias")
@click.pass_obj
def query_group(ctx, index):
    if ctx.env.target_cluster is None:
        raise click.UsageError("Target cluster is not defined.")
    if index is None:
        if ctx.env.ingest is None:
            raise click.UsageError("Pass --index or set ingest in the services yaml.")
        index = ctx.env.ingest.alias_name
    ctx.queries = StockQueries(ctx.env.target_cluster, index)


@query_group.command(name="count")
@click.pass_obj
def count_query_cmd(ctx):
    """Count the documents"""
    _echo_result(*queries_.count(ctx.queries, as_json=ctx.json))


@query_group.command(name="symbols")
@click.option("--size", type=click.IntRange(min=1), default=1000, show_default=True)
@click.pass_obj
def symbols_query_cmd(ctx, size):
    """List the distinct ticker symbols"""
    _echo_result(*queries_.symbols(ctx.queries, size=size, as_json=ctx.json))


@query_group.command(name="symbol")
@click.argument("symbol")
@click.option("--size", type=click.IntRange(min=1), default=20, show_default=True)
@click.pass_obj
def symbol_query_cmd(ctx, symbol, size):
    """Most recent prices for one ticker symbol"""
    _echo_result(*queries_.latest_for_symbol(ctx.queries, symbol, size=size, as_json=ctx.json))


@query_group.command(name="search")
@click.argument("text")
@click.option("--size", type=click.IntRange(min=1), default=20, show_default=True)
@click.pass_obj
def search_query_cmd(ctx, text, size):
    """Full-text search on the company name"""
    _echo_result(*queries_.search_name(ctx.queries, text, size=size, as_json=ctx.json))


@query_group.command(name="monthly-volume")
@click.argument("symbol")
@click.pass_obj
def monthly_volume_query_cmd(ctx, symbol):
    """Traded volume per month for one ticker symbol"""
    _echo_result(*queries_.monthly_volume(ctx.queries, symbol, as_json=ctx.json))


@query_group.command(name="scroll")
@click.option("--slices", type=click.IntRange(min=1), default=None,
              help="Parallel scroll slices, defaults to the number of CPUs")
@click.option("--batch-size", type=click.IntRange(min=1), default=1000, show_default=True)
@click.pass_obj
def scroll_query_cmd(ctx, slices, batch_size):
    """Print the symbol of every document"""
    def print_page(page):
        for document in page:
            click.echo(document.get("symbol"))

    try:
        total = ctx.queries.scroll_all(print_page, slices=slices, batch_size=batch_size)
    except QueryError as e:
        raise click.ClickException(f"Failure on scroll: {e}")
    click.echo(f"Scrolled {total} documents", err=True)


#################################################

def main():
    cli()


if __name__ == "__main__":
    main()
