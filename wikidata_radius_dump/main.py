"""
Command line entry point: run one radius dump and report its progress.
"""

import sys
import signal
import argparse
import asyncio
from dataclasses import replace
from typing import Optional

from config import ConfigManager, SystemConfig
from wikidata_radius_dump.clients.query_client import QueryClient
from wikidata_radius_dump.clients.search_client import SearchClient, InstanceEnumerator
from wikidata_radius_dump.crawl.models import CrawlConfig, JobStatus, ProgressSnapshot
from wikidata_radius_dump.data.storage import DumpStorage
from wikidata_radius_dump.services.job_manager import JobManager
from wikidata_radius_dump.utils.errors import ConfigurationError, ValidationError, handle_error
from wikidata_radius_dump.utils.logging import get_logger, setup_logging


logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_ABORTED = 130


class RadiusDumpApp:
    """Wires configuration, clients and the job manager for a CLI run."""

    def __init__(self, config: SystemConfig, dumps_dir: Optional[str] = None):
        self.config = config
        self.dumps_dir = dumps_dir or config.crawl.dumps_dir

        self.query_client: Optional[QueryClient] = None
        self.search_client: Optional[SearchClient] = None
        self.job_manager: Optional[JobManager] = None
        self._job_id: Optional[str] = None

    def initialize(self) -> None:
        self.query_client = QueryClient(self.config.query_service)
        self.search_client = SearchClient(self.config.search_api)
        self.job_manager = JobManager(
            query_client=self.query_client,
            enumerator=InstanceEnumerator(self.search_client),
            storage=DumpStorage(self.dumps_dir),
            settings=self.config.crawl,
        )

    def _signal_handler(self, signum: int, frame) -> None:
        """Turn Ctrl-C into a job abort; the job stops at its next unit of work."""
        logger.info(f"Received signal {signum}, aborting job")
        if self.job_manager and self._job_id:
            self.job_manager.abort(self._job_id)

    async def run(self, crawl_config: CrawlConfig) -> int:
        """Run one job to its end and return the process exit code."""
        self._job_id = self.job_manager.start_crawl(crawl_config)
        unsubscribe = self.job_manager.subscribe_progress(self._job_id, print_progress)

        try:
            job = await self.job_manager.wait(self._job_id)
        finally:
            unsubscribe()

        if job.status is JobStatus.COMPLETED:
            print(f"N-Triples: {job.output_files.nt}")
            print(f"Turtle:    {job.output_files.ttl}")
            return EXIT_OK
        if job.status is JobStatus.ABORTED:
            print(f"Job aborted; partial output in {job.dump_dir}")
            return EXIT_ABORTED

        print(f"Job failed: {job.error}", file=sys.stderr)
        return EXIT_FAILED

    def stop(self) -> None:
        if self.query_client:
            self.query_client.close()
        if self.search_client:
            self.search_client.close()


def print_progress(snapshot: ProgressSnapshot) -> None:
    if snapshot.message:
        print(f"[{snapshot.percent:5.1f}%] {snapshot.phase.value}: {snapshot.message}", flush=True)


def create_cli_parser() -> argparse.ArgumentParser:
    """Create command-line interface parser."""
    parser = argparse.ArgumentParser(
        description='Wikidata radius dump - export the neighbourhood of a class as RDF',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --class Q3305213                      # Paintings, radius 2
  %(prog)s --class Q5 --radius 1 --max-instances 500
  %(prog)s --class Q515 --no-subclasses --language de
  %(prog)s --class Q3305213 --dumps-dir /tmp/dumps
        """
    )

    parser.add_argument(
        '--class',
        dest='class_id',
        type=str,
        required=True,
        help='Root class QID (e.g. Q3305213)'
    )

    parser.add_argument(
        '--radius', '-r',
        type=int,
        default=2,
        help='Number of hops to follow from the instances (1-3, default: 2)'
    )

    parser.add_argument(
        '--max-instances', '-n',
        type=int,
        default=10000,
        help='Maximum number of instances to enumerate (default: 10000)'
    )

    parser.add_argument(
        '--language', '-l',
        type=str,
        default='en',
        help='Language of labels and descriptions (default: en)'
    )

    parser.add_argument(
        '--no-subclasses',
        action='store_true',
        help='Only enumerate direct instances of the class'
    )

    parser.add_argument(
        '--no-property-metadata',
        action='store_true',
        help='Skip fetching labels and descriptions of the properties used'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        help='Path to configuration file (default: config.json)'
    )

    parser.add_argument(
        '--dumps-dir',
        type=str,
        help='Directory receiving the job directories (default: from configuration)'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        help='Override log level from configuration'
    )

    return parser


def main(argv=None):
    """Main entry point with command-line interface."""
    parser = create_cli_parser()
    args = parser.parse_args(argv)

    try:
        system_config = ConfigManager(args.config or "config.json").load_config()
        if args.log_level:
            system_config = replace(system_config, log_level=args.log_level)

        crawl_config = CrawlConfig(
            class_id=args.class_id,
            radius=args.radius,
            max_instances=args.max_instances,
            language=args.language,
            include_subclasses=not args.no_subclasses,
            include_property_metadata=not args.no_property_metadata,
        )
    except (ConfigurationError, ValidationError) as e:
        errors = e.details.get("errors")
        print(f"Error: {e.message}" + (f" ({'; '.join(errors)})" if errors else ""), file=sys.stderr)
        sys.exit(EXIT_USAGE)

    setup_logging(system_config.log_level, system_config.log_file)

    app = RadiusDumpApp(system_config, dumps_dir=args.dumps_dir)
    exit_code = EXIT_OK
    previous_handler = signal.signal(signal.SIGINT, app._signal_handler)

    try:
        app.initialize()
        exit_code = asyncio.run(app.run(crawl_config))
    except Exception as e:
        handle_error(e, logger, {"class_id": crawl_config.class_id}, reraise=False)
        exit_code = EXIT_FAILED
    finally:
        signal.signal(signal.SIGINT, previous_handler)
        app.stop()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
