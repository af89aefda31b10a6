from pathlib import Path

import pytest

from kubepool.config import (
    SSHSettings,
    Settings,
    _deep_merge,
    build_settings,
    load_config,
    load_settings,
)
from kubepool.core.exceptions import ConfigurationError

pytestmark = [pytest.mark.unit]


class TestDeepMerge:
    def test_shallow_override(self):
        assert _deep_merge({"a": 1, "b": 2}, {"b": 3}) == {"a": 1, "b": 3}

    def test_nested_merge(self):
        base = {"contabo": {"product_id": "V78", "page_size": 50}}
        override = {"contabo": {"product_id": "V92"}}
        assert _deep_merge(base, override) == {"contabo": {"product_id": "V92", "page_size": 50}}

    def test_empty_override(self):
        assert _deep_merge({"a": 1}, {}) == {"a": 1}


class TestLoadConfig:
    def test_project_overrides_global(self, tmp_path: Path):
        global_toml = tmp_path / "defaults.toml"
        global_toml.write_text('[contabo]\nproduct_id = "V78"\nprovisioning = "auto"\n')
        project = tmp_path / "project"
        project.mkdir()
        (project / "kubepool.toml").write_text('[contabo]\nproduct_id = "V92"\n')

        result = load_config(project_dir=project, global_path=global_toml)

        assert result == {"contabo": {"product_id": "V92", "provisioning": "auto"}}

    def test_no_files(self, tmp_path: Path):
        assert load_config(project_dir=tmp_path, global_path=tmp_path / "nope.toml") == {}

    def test_invalid_toml(self, tmp_path: Path):
        (tmp_path / "kubepool.toml").write_text("[contabo\n")
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            load_config(project_dir=tmp_path, global_path=tmp_path / "nope.toml")


class TestBuildSettings:
    def test_defaults(self):
        settings = build_settings({})
        assert settings == Settings()
        assert settings.kubernetes_version == "1.32"
        assert settings.contabo.provisioning == "manual"

    def test_sections(self):
        settings = build_settings({
            "contabo": {"product_id": "V92", "private_networking": True},
            "ssh": {"key_path": "~/.ssh/kubepool"},
            "checks": {"retries": 3},
            "kubernetes": {"version": "v1.32", "cni": "flannel"},
            "logging": {"level": "DEBUG", "file": ""},
        })
        assert settings.contabo.product_id == "V92"
        assert settings.contabo.private_networking
        assert settings.ssh.key_path == "~/.ssh/kubepool"
        assert settings.checks.retries == 3
        assert settings.checks.max_provision_attempts == 3
        assert settings.kubernetes_version == "v1.32"
        assert settings.cni == "flannel"
        assert settings.logging.level == "DEBUG"

    @pytest.mark.parametrize(
        ("raw", "message"),
        [
            ({"provider": "hetzner"}, "Unknown provider"),
            ({"contabo": {"prodcut_id": "V78"}}, r"Unknown key\(s\) in \[contabo\]: prodcut_id"),
            ({"kubernetes": {"cni": "weave"}}, "Unknown CNI"),
            ({"kubernetes": {"vesion": "1.32"}}, r"\[kubernetes\]"),
            ({"pools": {}}, r"Unknown section\(s\): pools"),
        ],
    )
    def test_rejects_invalid(self, raw: dict, message: str):
        with pytest.raises(ConfigurationError, match=message):
            build_settings(raw)

    def test_load_settings(self, tmp_path: Path):
        (tmp_path / "kubepool.toml").write_text('[ssh]\nuser = "ubuntu"\n')
        settings = load_settings(project_dir=tmp_path, global_path=tmp_path / "nope.toml")
        assert settings.ssh.user == "ubuntu"


class TestSSHSettings:
    def test_reads_public_key_next_to_private_key(self, tmp_path: Path):
        key = tmp_path / "id_ed25519"
        (tmp_path / "id_ed25519.pub").write_text("ssh-ed25519 AAAA test\n")
        assert SSHSettings(key_path=str(key)).public_key() == "ssh-ed25519 AAAA test"

    def test_missing_public_key(self, tmp_path: Path):
        with pytest.raises(ConfigurationError, match="Cannot read SSH public key"):
            SSHSettings(key_path=str(tmp_path / "missing")).public_key()
