"""Argument parsing, configuration loading, and reconciler bootstrap."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
from dataclasses import dataclass

from .api.client import ScalewayClient
from .config import AppConfig, load_config
from .engine.retry import RetryPolicy
from .engine.serializer import MutationSerializer
from .exceptions import ConfigError, ReconcilerError
from .logging_config import configure_logging
from .manifest import load_manifest
from .resources.ip import IPReconciler
from .resources.security_group_rule import SecurityGroupRuleReconciler
from .resources.server import ServerReconciler

logger = logging.getLogger(__name__)

IMPORT_KINDS = ("server", "ip", "security_group_rule")


@dataclass
class Reconcilers:
    server: ServerReconciler
    ip: IPReconciler
    security_group_rule: SecurityGroupRuleReconciler


def build_reconcilers(config: AppConfig, gateway=None, serializer: MutationSerializer | None = None) -> Reconcilers:
    """Wire every reconciler to one gateway and one shared serializer."""
    gateway = gateway or ScalewayClient(config.api)
    serializer = serializer or MutationSerializer()
    retry = RetryPolicy(config.retry)
    wait = RetryPolicy(config.state_wait)
    return Reconcilers(
        server=ServerReconciler(gateway, retry, serializer, wait=wait, provider=config.provider),
        ip=IPReconciler(gateway, retry, serializer),
        security_group_rule=SecurityGroupRuleReconciler(gateway, retry, serializer),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scaleway-reconciler",
        description="Reconcile servers, IPs and security-group rules against the Scaleway compute API",
    )
    parser.add_argument(
        "-c", "--config",
        required=True,
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "-m", "--manifest",
        help="Path to a YAML manifest of desired resources",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate the configuration (and manifest) and exit",
    )
    parser.add_argument(
        "--import",
        dest="import_ref",
        metavar="KIND:ID",
        help="Read an existing resource and print it as a desired-state record",
    )
    return parser


def run_import(reconcilers: Reconcilers, ref: str) -> dict:
    kind, sep, resource_id = ref.partition(":")
    if not sep or kind not in IMPORT_KINDS or not resource_id:
        raise ReconcilerError(f"--import expects KIND:ID with KIND in {', '.join(IMPORT_KINDS)}")
    spec = getattr(reconcilers, kind).import_state(resource_id)
    return {"kind": kind, "id": resource_id, "attributes": dataclasses.asdict(spec)}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    configure_logging(config.logging)

    try:
        if args.manifest:
            manifest = load_manifest(args.manifest, config.provider)
            logger.info("Manifest declares %d resources", manifest.resource_count)

        if args.validate:
            logger.info("Configuration is valid")
            return 0

        if args.import_ref:
            result = run_import(build_reconcilers(config), args.import_ref)
            print(json.dumps(result, indent=2, default=str))
            return 0
    except ReconcilerError as exc:
        logger.error("Fatal error: %s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0

    parser.print_usage(sys.stderr)
    return 1
