"""Tests for VLAB configuration loading and VM sizing."""

import pytest

from vlab_config import (
    Config, ConfigError, VMConfig, VMsConfig, load_config, parse_config,
    VM_SIZE_DEFAULT, VM_SIZE_COMPACT, VM_SIZE_FULL,
)


class TestSizing:
    def test_default(self):
        vms = VMsConfig().sized(VM_SIZE_DEFAULT)
        assert vms.control == VMConfig(cpu=6, ram=6144, disk=100)
        assert vms.server == VMConfig(cpu=2, ram=512, disk=10)
        assert vms.switch == VMConfig(cpu=4, ram=5120, disk=50)

    def test_compact(self):
        vms = VMsConfig().sized(VM_SIZE_COMPACT)
        assert vms.control == VMConfig(cpu=4, ram=4096, disk=50)
        assert vms.server == VMConfig(cpu=1, ram=512, disk=10)
        assert vms.switch == VMConfig(cpu=3, ram=3584, disk=30)

    def test_full(self):
        vms = VMsConfig().sized(VM_SIZE_FULL)
        assert vms.control == VMConfig(cpu=8, ram=16384, disk=250)
        assert vms.server == VMConfig(cpu=2, ram=512, disk=10)
        assert vms.switch == VMConfig(cpu=4, ram=8192, disk=50)

    def test_default_size_replaces_user_values(self):
        vms = VMsConfig(server=VMConfig(ram=1024), switch=VMConfig(cpu=8)).sized(VM_SIZE_DEFAULT)
        assert vms.server == VMConfig(cpu=2, ram=512, disk=10)
        assert vms.switch == VMConfig(cpu=4, ram=5120, disk=50)

    def test_user_values_kept_where_size_class_is_silent(self):
        vms = VMsConfig(server=VMConfig(ram=1024), switch=VMConfig(cpu=8)).sized(VM_SIZE_FULL)
        assert vms.server == VMConfig(cpu=2, ram=1024, disk=10)
        assert vms.switch == VMConfig(cpu=8, ram=8192, disk=50)

    def test_size_class_overrides_user_values(self):
        vms = VMsConfig(server=VMConfig(cpu=4, ram=2048)).sized(VM_SIZE_COMPACT)
        assert vms.server == VMConfig(cpu=1, ram=2048, disk=10)

    def test_unknown_size(self):
        with pytest.raises(ConfigError, match="Unknown VM size"):
            VMsConfig().sized("tiny")


class TestLoad:
    def test_none_is_defaults(self):
        cfg = load_config(None)
        assert cfg == Config()
        assert cfg.basedir == ".hhfab/vlab"

    def test_load_file(self, tmp_path):
        path = tmp_path / "vlab.yaml"
        path.write_text(
            "basedir: /var/lib/vlab\n"
            "sshKey: /keys/id\n"
            "vms:\n"
            "  switch:\n"
            "    cpu: 2\n"
            "    ram: '4096'\n"
            "links:\n"
            "  leaf-1/Ethernet1:\n"
            "    pci: '0000:01:00.0'\n"
        )

        cfg = load_config(str(path))
        assert cfg.basedir == "/var/lib/vlab"
        assert cfg.ssh_key == "/keys/id"
        assert cfg.vms.switch == VMConfig(cpu=2, ram=4096)
        assert cfg.vms.control == VMConfig()
        assert cfg.links["leaf-1/Ethernet1"].pci_address == "0000:01:00.0"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "vlab.yaml"
        path.write_text("")
        assert load_config(str(path)) == Config()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "missing.yaml"))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "vlab.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(str(path))

    @pytest.mark.parametrize("value", ["lots", -1])
    def test_bad_vm_values(self, value):
        with pytest.raises(ConfigError, match="vms.server.cpu"):
            parse_config({"vms": {"server": {"cpu": value}}})

    def test_link_without_pci(self):
        cfg = parse_config({"links": {"leaf-1/Ethernet1": {}}})
        assert cfg.links["leaf-1/Ethernet1"].pci_address == ""
