from __future__ import annotations

from pathlib import Path

import pytest
from loguru import logger

from kubepool.observability.logging import LogConfig, _scope, setup_logging, teardown_logging

pytestmark = [pytest.mark.unit]


class TestScope:
    def test_component_and_location(self):
        record = {"name": "kubepool.provisioners.contabo", "extra": {
            "component": "provisioner", "cluster_id": "c1", "node_id": "1001", "provider": "contabo",
        }}
        assert _scope(record) == "provisioner c1/1001 [provider=contabo]"

    def test_falls_back_to_module_name(self):
        assert _scope({"name": "kubepool.wait", "extra": {}}) == "kubepool.wait"


def test_file_sink_records_debug(tmp_path: Path):
    log_file = tmp_path / "logs" / "kubepool.log"
    ids = setup_logging(LogConfig(console=False, file=str(log_file)))
    try:
        logger.bind(component="kubernetes", cluster_id="c1").patch(
            lambda r: r.update(name="kubepool.kubernetes.base")
        ).debug("Joined {node}", node="vmi1002")
    finally:
        teardown_logging(ids)

    content = log_file.read_text()
    assert "kubernetes c1 |" in content
    assert "Joined vmi1002" in content
