"""
Collector module - 远程信息采集与探测模块

包含：
- addresses: 服务器地址采集
- probes: ping / iperf3 / curl 探测命令与结果解析
"""

from .addresses import (
    AddressCollector, AddressCollectorError, parse_ipv4_addresses, VPC_ADDRESS_POOL,
)
from .probes import (
    ProbeError, Iperf3Sum, Iperf3Report, parse_iperf3_report, format_bytes,
    ping_command, ping_timeout, iperf_server_command, iperf_client_command,
    iperf_timeout, curl_command,
)

__all__ = [
    'AddressCollector',
    'AddressCollectorError',
    'parse_ipv4_addresses',
    'VPC_ADDRESS_POOL',
    'ProbeError',
    'Iperf3Sum',
    'Iperf3Report',
    'parse_iperf3_report',
    'format_bytes',
    'ping_command',
    'ping_timeout',
    'iperf_server_command',
    'iperf_client_command',
    'iperf_timeout',
    'curl_command',
]
