"""
Output Formatters

Provides functions to format the VM registry and connectivity
test results for different output formats.
"""

import json
import logging
from typing import Any, Dict, List, Optional, TextIO
from pathlib import Path

from engine.topology import VMRegistry
from engine.connectivity import ConnectivityReport

logger = logging.getLogger(__name__)


def to_json(
    data: Dict[str, Any],
    path: str,
    indent: int = 2
) -> None:
    """
    Write a JSON-ready dict to a file.

    Args:
        data: Output of VMRegistry.to_dict() or ConnectivityReport.to_dict()
        path: Output file path
        indent: JSON indentation level
    """
    path_obj = Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False)

    logger.info(f"Output written to {path}")


def registry_to_text(
    registry: VMRegistry,
    file: Optional[TextIO] = None
) -> str:
    """
    Format the VM registry as human-readable text.

    Args:
        registry: Compiled VMs
        file: Optional file to write to

    Returns:
        Formatted text string
    """
    lines = []

    # Header
    lines.append("=" * 60)
    lines.append("VLAB VM REPORT")
    lines.append("=" * 60)
    lines.append("")

    # Summary
    by_type: Dict[str, int] = {}
    for vm in registry:
        by_type[vm.type] = by_type.get(vm.type, 0) + 1

    lines.append("SUMMARY")
    lines.append("-" * 40)
    lines.append(f"  VMs:                {len(registry)}")
    for vm_type, count in sorted(by_type.items()):
        lines.append(f"  {vm_type + ':':<20}{count}")
    lines.append("")

    # VMs
    lines.append("VMS")
    lines.append("-" * 40)
    for vm in registry:
        cfg = vm.config
        lines.append(f"  [{vm.id}] {vm.name} ({vm.type})")
        lines.append(f"    CPU: {cfg.cpu}  RAM: {cfg.ram} MiB  Disk: {cfg.disk} GiB  SSH: {vm.ssh_port}")

        for idx, iface in vm.sorted_interfaces():
            if iface.is_placeholder:
                lines.append(f"      - {idx}: (unused)")
            elif iface.passthrough:
                lines.append(f"      - {idx}: {iface.connection} passthrough={iface.passthrough}")
            else:
                lines.append(f"      - {idx}: {iface.connection} {iface.netdev}")

    lines.append("")

    # Footer
    lines.append("=" * 60)

    text = "\n".join(lines)

    if file is not None:
        file.write(text)

    return text


def format_report(report: ConnectivityReport) -> str:
    """
    Format connectivity test results as a summary text.

    Args:
        report: Connectivity test report

    Returns:
        Formatted summary string
    """
    lines = []

    lines.append(
        f"Tested {report.tested}: {report.passed} passed, {report.failed} failed"
    )

    failures = report.failures()
    if not failures:
        return "\n".join(lines)

    lines.append("")

    for result in failures:
        lines.append(f"[FAIL] {result.check} {result.source} -> {result.target} - {result.message}")
        for line in _indent(result.output):
            lines.append(line)

    return "\n".join(lines)


def _indent(text: str, prefix: str = "    ") -> List[str]:
    if not text:
        return []
    return [prefix + line for line in text.splitlines()]
