"""
连通性探测命令模块

构造在服务器上执行的探测命令（参数列表形式），并解析结果：
- ping: 可达性
- iperf3: 吞吐量（JSON 报告）
- curl: 外部出口
"""

import json
import logging
from typing import Dict, List, Any
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

PING_WAIT = 1  # 每个探测包的等待时间（秒）
PING_SLACK = 5

IPERF_SERVER_SLACK = 7
IPERF_CLIENT_SLACK = 5
IPERF_SSH_SLACK = 10

CURL_TARGET = "https://8.8.8.8"
CURL_TIMEOUT = 5
CURL_SSH_TIMEOUT = 10
CURL_EXPECTED = "302 Moved"

PING_LOSS_MESSAGE = "0 received, 100% packet loss"


class ProbeError(Exception):
    """探测结果解析错误"""
    pass


def toolbox(command: List[str], timeout: int) -> List[str]:
    """在 toolbox 容器中以超时方式运行命令"""
    return ["toolbox", "-q", "timeout", str(timeout)] + command


def ping_command(target: str, count: int) -> List[str]:
    return ["ping", "-c", str(count), "-W", str(PING_WAIT), target]


def ping_timeout(count: int) -> int:
    return count + PING_SLACK


def iperf_server_command(duration: int) -> List[str]:
    # -1: 处理一个客户端后退出
    return toolbox(["iperf3", "-s", "-1"], duration + IPERF_SERVER_SLACK)


def iperf_client_command(target: str, duration: int) -> List[str]:
    return toolbox(["iperf3", "-J", "-c", target, "-t", str(duration)], duration + IPERF_CLIENT_SLACK)


def iperf_timeout(duration: int) -> int:
    return duration + IPERF_SSH_SLACK


def curl_command(target: str = CURL_TARGET) -> List[str]:
    return toolbox(["curl", "--insecure", target], CURL_TIMEOUT)


@dataclass
class Iperf3Sum:
    """iperf3 汇总数据"""
    bytes: int = 0
    bits_per_second: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Iperf3Sum":
        return cls(
            bytes=int(data["bytes"]),
            bits_per_second=float(data["bits_per_second"]),
        )


@dataclass
class Iperf3Report:
    """iperf3 JSON 报告（只保留需要的部分）"""
    sum_sent: Iperf3Sum
    sum_received: Iperf3Sum
    intervals: List[Iperf3Sum] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent_bytes": self.sum_sent.bytes,
            "sent_bps": self.sum_sent.bits_per_second,
            "received_bytes": self.sum_received.bytes,
            "received_bps": self.sum_received.bits_per_second,
        }


def parse_iperf3_report(data: str) -> Iperf3Report:
    """
    解析 iperf3 -J 输出

    Args:
        data: iperf3 客户端输出

    Returns:
        Iperf3Report

    Raises:
        ProbeError: 输出不是预期格式的 JSON
    """
    try:
        doc = json.loads(data)
    except json.JSONDecodeError as e:
        raise ProbeError(f"Error unmarshaling iperf3 report: {e}")

    try:
        end = doc["end"]
        report = Iperf3Report(
            sum_sent=Iperf3Sum.from_dict(end["sum_sent"]),
            sum_received=Iperf3Sum.from_dict(end["sum_received"]),
            intervals=[
                Iperf3Sum.from_dict(interval["sum"])
                for interval in doc.get("intervals") or []
            ],
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ProbeError(f"Unexpected iperf3 report format: {e}")

    return report


def format_bytes(value: float) -> str:
    """以十进制单位格式化字节数，例如 1.2 GB"""
    units = ["B", "kB", "MB", "GB", "TB", "PB"]
    size = float(value)
    for unit in units:
        if abs(size) < 1000 or unit == units[-1]:
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.1f} {unit}"
        size /= 1000
