"""
服务器地址采集模块

通过 SSH 远程读取服务器上已配置的 IPv4 地址，用于：
- 确认服务器实际获得的 VPC 地址
- 校验地址所在子网与 VPC 子网声明一致
"""

import ipaddress
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)

# VPC 子网从该地址池分配，管理网 (172.31.x.x) 与回环地址不在其中
VPC_ADDRESS_POOL = ipaddress.ip_network("10.0.0.0/16")

ADDRESS_TIMEOUT = 5


class AddressCollectorError(Exception):
    """地址采集错误"""
    pass


class AddressCollector:
    """服务器 IPv4 地址采集器"""

    def __init__(self, runner, vm, pool: ipaddress.IPv4Network = VPC_ADDRESS_POOL):
        """
        初始化采集器

        Args:
            runner: 远程执行器，需要实现 run(vm, command, timeout) 方法
            vm: 目标虚拟机
            pool: 只保留该地址池中的地址
        """
        self.runner = runner
        self.vm = vm
        self.pool = pool

    def collect(self) -> List[ipaddress.IPv4Interface]:
        """
        采集地址池内的所有 IPv4 地址

        Returns:
            地址列表（带前缀长度）

        Raises:
            AddressCollectorError: 远程命令执行失败
        """
        output, ok = self.runner.run(self.vm, ["ip", "-4", "-o", "addr", "show"], ADDRESS_TIMEOUT)
        if not ok:
            raise AddressCollectorError(
                f"Failed to list addresses on {self.vm.name}: {output.strip()}"
            )

        return [addr for addr in parse_ipv4_addresses(output) if addr.ip in self.pool]

    def collect_single(self) -> ipaddress.IPv4Interface:
        """
        采集唯一的 VPC 地址

        Raises:
            AddressCollectorError: 没有地址或存在多个地址
        """
        addrs = self.collect()
        if not addrs:
            raise AddressCollectorError(f"No address from {self.pool} found on {self.vm.name}")
        if len(addrs) > 1:
            raise AddressCollectorError(
                f"Multiple addresses from {self.pool} found on {self.vm.name}: "
                f"{', '.join(str(a) for a in addrs)}"
            )

        logger.debug(f"Observed address {addrs[0]} on {self.vm.name}")
        return addrs[0]


def parse_ipv4_addresses(output: str) -> List[ipaddress.IPv4Interface]:
    """
    解析 `ip -4 -o addr show` 输出

    每行格式类似：
        3: bond0.1001    inet 10.0.1.10/24 brd 10.0.1.255 scope global bond0.1001

    无法解析的行会被忽略
    """
    addrs = []
    for line in output.strip().split('\n'):
        fields = line.split()
        addr = _field_after(fields, "inet")
        if not addr:
            continue

        try:
            addrs.append(ipaddress.IPv4Interface(addr))
        except ValueError:
            logger.debug(f"Skipping unparsable address '{addr}'")

    return addrs


def _field_after(fields: List[str], key: str) -> Optional[str]:
    try:
        idx = fields.index(key)
    except ValueError:
        return None
    return fields[idx + 1] if idx + 1 < len(fields) else None
