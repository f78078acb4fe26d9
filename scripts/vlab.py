#!/usr/bin/env python3
"""
VLAB Command Line

Compiles the wiring into VM definitions and checks connectivity of a
deployed fabric.

Usage:
    python scripts/vlab.py compile -w wiring.yaml -c vlab.yaml -f json -o vms.json
    python scripts/vlab.py setup-vpcs -w wiring.yaml -c vlab.yaml
    python scripts/vlab.py test-connectivity -w wiring.yaml -c vlab.yaml --ping 1 --iperf 10

Exit codes:
    0 success, 1 error, 2 connectivity checks failed
"""

import argparse
import logging
import os
import sys

# Add parent directory to path for imports when running as script
script_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(script_dir)
if project_root not in sys.path:
    sys.path.insert(0, project_root)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CHECKS_FAILED = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def build_registry(args):
    """Load wiring and config and compile the VM registry."""
    from vlab_config import load_config
    from wiring import load_wiring
    from engine import compile_topology

    cfg = load_config(args.config)
    wiring = load_wiring(args.wiring)
    basedir = args.basedir or cfg.basedir
    registry = compile_topology(cfg, wiring, basedir, size=args.size)

    return cfg, wiring, registry, basedir


def build_reader(args, basedir: str):
    """Overlay reader: a snapshot file when given, the VLAB cluster otherwise."""
    from overlay import FileOverlayReader, KubectlOverlayReader

    if args.overlay:
        return FileOverlayReader(args.overlay, namespace=args.namespace)
    return KubectlOverlayReader(
        os.path.join(basedir, "kubeconfig.yaml"),
        namespace=args.namespace,
    )


def cmd_compile(args) -> int:
    from output import to_json, registry_to_text

    _, _, registry, _ = build_registry(args)

    if args.format == "json":
        if not args.output:
            print("Error: --output is required for JSON format", file=sys.stderr)
            return EXIT_ERROR
        to_json(registry.to_dict(), args.output)
        print(f"VMs written to {args.output}")
        return EXIT_OK

    text = registry_to_text(registry)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"Report written to {args.output}")
    else:
        print(text)

    return EXIT_OK


def cmd_setup_vpcs(args) -> int:
    from ssh_client import SSHRunner
    from engine import VPCSetup

    cfg, wiring, registry, basedir = build_registry(args)
    reader = build_reader(args, basedir)
    runner = SSHRunner(cfg.ssh_key)

    netconfs = VPCSetup(wiring, registry, reader, runner).run()
    print(f"Configured {len(netconfs)} servers")

    return EXIT_OK


def cmd_test_connectivity(args) -> int:
    from ssh_client import SSHRunner
    from engine import ConnectivityTester, ConnectivityTestConfig
    from output import to_json, format_report

    cfg, wiring, registry, basedir = build_registry(args)
    reader = build_reader(args, basedir)
    runner = SSHRunner(cfg.ssh_key)

    test_cfg = ConnectivityTestConfig(
        vpc=not args.no_vpc,
        vpc_ping=args.ping,
        vpc_iperf=args.iperf,
        ext=not args.no_ext,
        ext_curl=not args.no_curl,
    )

    report = ConnectivityTester(wiring, registry, reader, runner).run(test_cfg)

    if args.output:
        to_json(report.to_dict(), args.output)

    print(format_report(report))

    return EXIT_OK if report.ok else EXIT_CHECKS_FAILED


def build_parser() -> argparse.ArgumentParser:
    from vlab_config import VM_SIZES, VM_SIZE_DEFAULT
    from overlay import DEFAULT_NAMESPACE

    parser = argparse.ArgumentParser(
        description="Build and verify a virtual fabric lab"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output"
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-w", "--wiring",
        default="wiring.yaml",
        help="Path to wiring file (default: wiring.yaml)"
    )
    common.add_argument(
        "-c", "--config",
        help="Path to VLAB config file (default: built-in defaults)"
    )
    common.add_argument(
        "--basedir",
        help="VLAB base directory (default: from config)"
    )
    common.add_argument(
        "--size",
        choices=VM_SIZES,
        default=VM_SIZE_DEFAULT,
        help="VM size class (default: default)"
    )

    overlay = argparse.ArgumentParser(add_help=False)
    overlay.add_argument(
        "--namespace",
        default=DEFAULT_NAMESPACE,
        help="Namespace of the overlay objects (default: default)"
    )
    overlay.add_argument(
        "--overlay",
        help="Read overlay objects from a snapshot file instead of the cluster"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_compile = subparsers.add_parser("compile", parents=[common], help="Compile wiring into VMs")
    p_compile.add_argument(
        "-o", "--output",
        help="Output file path (default: stdout for text, required for JSON)"
    )
    p_compile.add_argument(
        "-f", "--format",
        choices=["json", "text"],
        default="text",
        help="Output format (default: text)"
    )
    p_compile.set_defaults(func=cmd_compile)

    p_setup = subparsers.add_parser("setup-vpcs", parents=[common, overlay], help="Create a VPC per server")
    p_setup.set_defaults(func=cmd_setup_vpcs)

    p_test = subparsers.add_parser("test-connectivity", parents=[common, overlay], help="Test server connectivity")
    p_test.add_argument("--no-vpc", action="store_true", help="Skip server to server checks")
    p_test.add_argument("--ping", type=int, default=3, help="Ping count, 0 to disable (default: 3)")
    p_test.add_argument("--iperf", type=int, default=10, help="iperf3 duration in seconds, 0 to disable (default: 10)")
    p_test.add_argument("--no-ext", action="store_true", help="Skip external checks")
    p_test.add_argument("--no-curl", action="store_true", help="Skip curl external check")
    p_test.add_argument("-o", "--output", help="Write results as JSON to this file")
    p_test.set_defaults(func=cmd_test_connectivity)

    return parser


def main():
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()

    setup_logging(args.verbose)
    logger = logging.getLogger(__name__)

    from vlab_config import ConfigError
    from wiring import WiringError
    from overlay import OverlayError
    from ssh_client import SSHClientError
    from engine import TopologyError, ConnectivityError, VPCSetupError

    try:
        sys.exit(args.func(args))

    except (ConfigError, WiringError) as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(EXIT_ERROR)
    except TopologyError as e:
        logger.error(f"Topology error: {e}")
        sys.exit(EXIT_ERROR)
    except (ConnectivityError, VPCSetupError, OverlayError) as e:
        logger.error(f"Fabric error: {e}")
        sys.exit(EXIT_ERROR)
    except SSHClientError as e:
        logger.error(f"SSH error: {e}")
        sys.exit(EXIT_ERROR)
    except Exception as e:
        logger.error(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(EXIT_ERROR)


if __name__ == "__main__":
    main()
