"""Command-line interface for lbwarden.

This module serves as the entrypoint for the lbwarden application.
"""

import argparse
import logging
import sys

from lbwarden.config import LbwardenConfig
from lbwarden.kubernetes.connection import KubernetesConnection
from lbwarden.kubernetes.events import EventRecorder
from lbwarden.kubernetes.loadbalancers import LoadBalancerStore
from lbwarden.kubernetes.loadbalancersets import LoadBalancerSetStore
from lbwarden.loadbalancer import LoadBalancerController
from lbwarden.openstack.auth import OpenStackClientFactory
from lbwarden.scheduler import Scheduler


def setup_logging(verbose: bool = False) -> None:
    """Set up logging configuration.

    Args:
        verbose: Whether to enable verbose logging.
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(level=log_level, format=log_format, stream=sys.stdout)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        args: Command-line arguments to parse. If None, sys.argv will be used.

    Returns:
        Parsed arguments.
    """
    parser = argparse.ArgumentParser(
        prog="lbwarden",
        description=(
            "Kubernetes controller that provisions OpenStack networking for LoadBalancers "
            "and rolls out their LoadBalancerSets."
        ),
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    parser.add_argument("--namespace", help="Namespace to watch LoadBalancers in (overrides LBWARDEN_NAMESPACE)")

    parser.add_argument(
        "--workers", type=int, help="Number of parallel reconciles (overrides LBWARDEN_WORKER_COUNT)"
    )

    parser.add_argument(
        "--openstack-timeout",
        type=float,
        help="Timeout in seconds for OpenStack calls (overrides LBWARDEN_OPENSTACK_TIMEOUT)",
    )

    parser.add_argument(
        "--skip-reconciles", action="store_true", help="Pause all reconciles (overrides LBWARDEN_SKIP_RECONCILES)"
    )

    parser.add_argument(
        "--only",
        metavar="NAMESPACE/NAME",
        help="Only reconcile this LoadBalancer (overrides LBWARDEN_SKIP_ALL_BUT)",
    )

    parser.add_argument(
        "--reconcile-once", metavar="NAMESPACE/NAME", help="Reconcile a single LoadBalancer once and exit"
    )

    return parser.parse_args(args)


def build_config(parsed_args: argparse.Namespace) -> LbwardenConfig:
    """Create the config from environment variables, overridden by command-line arguments.

    Raises:
        ValueError: If the resulting configuration is invalid.
    """
    config = LbwardenConfig.from_env()

    overrides = {}
    if parsed_args.namespace:
        overrides["namespace"] = parsed_args.namespace
    if parsed_args.workers is not None:
        overrides["worker_count"] = parsed_args.workers
    if parsed_args.openstack_timeout is not None:
        overrides["openstack_timeout"] = parsed_args.openstack_timeout
    if parsed_args.skip_reconciles:
        overrides["skip_reconciles"] = True
    if parsed_args.only:
        overrides["skip_all_but"] = parsed_args.only

    # validate the merged values
    return LbwardenConfig(**{**config.model_dump(), **overrides})


def build_scheduler(config: LbwardenConfig) -> Scheduler:
    connection = KubernetesConnection(timeout=config.kubernetes_timeout)
    recorder = EventRecorder(connection)
    controller = LoadBalancerController(
        store=LoadBalancerStore(connection),
        sets=LoadBalancerSetStore(connection),
        recorder=recorder,
        client_factory=OpenStackClientFactory(
            connection.core_v1_api, config.openstack_timeout, request_timeout=config.kubernetes_timeout
        ),
        config=config,
    )
    return Scheduler(config=config, connection=connection, controller=controller)


def main(args: list[str] | None = None) -> int:
    """Main entry point for the lbwarden application.

    Args:
        args: Command-line arguments. If None, sys.argv will be used.

    Returns:
        Exit code.
    """
    try:
        parsed_args = parse_args(args)
        setup_logging(parsed_args.verbose)
        logger = logging.getLogger(__name__)
        logger.info("Starting lbwarden")

        config = build_config(parsed_args)

        logger.info(
            f"Configuration: namespace={config.namespace or 'all'}, "
            f"workers={config.worker_count}, "
            f"openstack_timeout={config.openstack_timeout}s, "
            f"kubernetes_timeout={config.kubernetes_timeout}s, "
            f"openstack_reconcile_interval={config.openstack_reconcile_interval}s, "
            f"resync_interval={config.resync_interval}s, "
            f"skip_reconciles={config.skip_reconciles}, "
            f"only={config.skip_all_but or '-'}"
        )

        scheduler = build_scheduler(config)

        if parsed_args.reconcile_once:
            result = scheduler.reconcile_once(parsed_args.reconcile_once)
            logger.info(f"Reconciled {parsed_args.reconcile_once}, requeue after {result.requeue_after}")
        else:
            logger.info("Running continuous reconciliation")
            scheduler.run()

    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted by user")
    except ValueError as e:
        logging.getLogger(__name__).error(f"Configuration error: {e}")
        return 1
    except Exception as e:
        logging.getLogger(__name__).error(f"An unexpected error occurred: {e}")
        return 1

    logging.getLogger(__name__).info("lbwarden exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
