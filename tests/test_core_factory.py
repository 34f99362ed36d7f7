"""Tests for leasehold/core/factory.py: component wiring."""

import asyncio

import pytest
import yaml

from leasehold.adapters.provisioning import HttpProvisioningClient, LocalProvisioningClient
from leasehold.adapters.rotation import HttpRotationService, NoopRotationService
from leasehold.core.exceptions import ConfigError
from leasehold.core.factory import ComponentBundle, ComponentFactory
from leasehold.orchestrator.controller import SessionController
from tests.conftest import FakeProvisioningClient, FakeRotationService, ScriptedStage


@pytest.fixture
def config_dir(tmp_path):
    (tmp_path / "default.yaml").write_text(yaml.safe_dump({
        "orchestrator": {
            "worker_stagger_seconds": 0,
            "rotation_settle_seconds": 0,
            "rotation_retry_seconds": 0,
            "no_resource_wait_seconds": 0,
            "provision_failure_backoff_seconds": 0,
        },
        "provisioning": {"backend": "local"},
    }))
    (tmp_path / "resources.yaml").write_text(yaml.safe_dump({"resources": [{"name": "static-1"}]}))
    return tmp_path


class TestCreate:
    def test_with_stage_spec(self, config_dir):
        bundle = ComponentFactory.create(config_dir=config_dir, stages_spec="tests.stage_fixtures:build_stages")
        assert isinstance(bundle, ComponentBundle)
        assert isinstance(bundle.controller, SessionController)
        assert isinstance(bundle.provisioning, LocalProvisioningClient)
        assert isinstance(bundle.rotation, HttpRotationService)
        assert [s.name for s in bundle.stages] == ["Record"]
        assert bundle.config_dir == config_dir

    def test_explicit_stages_take_precedence(self, config_dir):
        stage = ScriptedStage("Direct")
        bundle = ComponentFactory.create(
            config_dir=config_dir,
            stages=[stage],
            stages_spec="tests.stage_fixtures:build_failing_stages",
        )
        assert bundle.stages == [stage]

    def test_no_stages_raises(self, config_dir):
        with pytest.raises(ConfigError, match="No stages given"):
            ComponentFactory.create(config_dir=config_dir)

    def test_http_backend(self, tmp_path):
        bundle = ComponentFactory.create(config_dir=tmp_path, stages=[ScriptedStage("A")])
        assert isinstance(bundle.provisioning, HttpProvisioningClient)

    def test_unknown_backend(self, tmp_path):
        (tmp_path / "default.yaml").write_text(yaml.safe_dump({"provisioning": {"backend": "ftp"}}))
        with pytest.raises(ConfigError, match="Unknown provisioning backend 'ftp'"):
            ComponentFactory.create(config_dir=tmp_path, stages=[ScriptedStage("A")])

    def test_noop_rotation_backend(self, tmp_path):
        (tmp_path / "default.yaml").write_text(yaml.safe_dump({"rotation": {"backend": "noop"}}))
        bundle = ComponentFactory.create(config_dir=tmp_path, stages=[ScriptedStage("A")])
        assert isinstance(bundle.rotation, NoopRotationService)

    def test_unknown_rotation_backend(self, tmp_path):
        (tmp_path / "default.yaml").write_text(yaml.safe_dump({"rotation": {"backend": "sms"}}))
        with pytest.raises(ConfigError, match="Unknown rotation backend 'sms'"):
            ComponentFactory.create(config_dir=tmp_path, stages=[ScriptedStage("A")])

    def test_overrides(self, config_dir):
        provisioning = FakeProvisioningClient()
        rotation = FakeRotationService()
        bundle = ComponentFactory.create(
            config_dir=config_dir,
            stages=[ScriptedStage("A")],
            provisioning=provisioning,
            rotation=rotation,
        )
        assert bundle.controller.provisioning is provisioning
        assert bundle.controller.rotation is rotation


class TestWiredSession:
    def test_session_reads_resources_from_config_dir(self, config_dir):
        bundle = ComponentFactory.create(config_dir=config_dir, stages_spec="tests.stage_fixtures:build_stages")

        async def _go():
            await bundle.controller.start(2, {"label": "x"})
            snapshot = await bundle.controller.wait()
            await ComponentFactory.close(bundle)
            return snapshot

        snapshot = asyncio.run(_go())
        assert snapshot.success_count == 2
        assert {u.resource_label for u in snapshot.completed_units} == {"static-1"}
        assert snapshot.completed_units[0].artifacts["label"] == "x"

    def test_close_shuts_http_clients(self, tmp_path):
        bundle = ComponentFactory.create(config_dir=tmp_path, stages=[ScriptedStage("A")])
        http_client = bundle.provisioning.client
        asyncio.run(ComponentFactory.close(bundle))
        assert http_client.is_closed
        assert bundle.provisioning._client is None
