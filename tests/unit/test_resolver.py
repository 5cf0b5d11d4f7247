"""Tests for the Pipeline Definition Resolver — the tier table."""

from __future__ import annotations

from datetime import timedelta

import pytest

from tierforge.config import EngineSettings
from tierforge.core.errors import UnknownEnvironment
from tierforge.core.resolver import TIER_RULES, parse_environment, resolve_pipeline_spec
from tierforge.models.environments import Environment
from tierforge.models.pipeline import PipelineSpec, PipelineType, TriggerMode
from tierforge.models.services import Runtime, Service, ServiceType


class TestTierTable:
    def test_develop_is_manual_feature(self, api_service, settings):
        spec = resolve_pipeline_spec(api_service, "develop", settings)
        assert spec.pipeline_type == PipelineType.FEATURE
        assert spec.trigger_mode == TriggerMode.MANUAL
        assert spec.requires_approval is False
        assert (spec.deploy_min_healthy_percent, spec.deploy_max_percent) == (50, 200)

    @pytest.mark.parametrize("environment", ["test", "qa"])
    def test_release_tiers_are_automatic(self, api_service, settings, environment):
        spec = resolve_pipeline_spec(api_service, environment, settings)
        assert spec.pipeline_type == PipelineType.RELEASE
        assert spec.trigger_mode == TriggerMode.AUTOMATIC
        assert spec.requires_approval is False
        assert (spec.deploy_min_healthy_percent, spec.deploy_max_percent) == (100, 200)

    def test_prod_requires_approval(self, api_service, settings):
        spec = resolve_pipeline_spec(api_service, Environment.PROD, settings)
        assert spec.pipeline_type == PipelineType.PRODUCTION
        assert spec.trigger_mode == TriggerMode.MANUAL
        assert spec.requires_approval is True
        assert spec.approval_timeout == timedelta(days=7)
        assert spec.scan_gate_blocking is True

    @pytest.mark.parametrize("service_type", list(ServiceType))
    @pytest.mark.parametrize("runtime", list(Runtime))
    def test_service_identity_does_not_matter(self, settings, runtime, service_type):
        service = Service(name="worker", runtime=runtime, service_type=service_type)
        spec = resolve_pipeline_spec(service, "prod", settings)
        assert spec.requires_approval is True

    def test_every_tier_has_a_rule(self):
        assert set(TIER_RULES) == set(Environment)

    def test_defaults_from_settings(self, api_service, settings):
        spec = resolve_pipeline_spec(api_service, "test", settings)
        assert spec.deploy_timeout == timedelta(minutes=15)
        assert spec.pipeline_name == "ecs-fargate-test-api"
        assert spec.spec_ref == "api:test"

    def test_desired_count_from_tier_defaults(self, api_service, settings):
        assert resolve_pipeline_spec(api_service, "prod", settings).desired_count == 3
        assert resolve_pipeline_spec(api_service, "qa", settings).desired_count == 2


class TestUnknownEnvironment:
    def test_raises(self, api_service, settings):
        with pytest.raises(UnknownEnvironment, match="staging"):
            resolve_pipeline_spec(api_service, "staging", settings)

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_environment("nope")

    def test_case_insensitive(self):
        assert parse_environment(" QA ") == Environment.QA


class TestSpecValidation:
    def test_approval_flag_must_follow_type(self, api_service, settings):
        spec = resolve_pipeline_spec(api_service, "test", settings)
        data = spec.model_dump()
        data["requires_approval"] = True
        with pytest.raises(ValueError):
            PipelineSpec(**data)

    def test_project_name_in_pipeline_name(self, api_service, tmp_path):
        settings = EngineSettings(_env_file=None, project_name="shop")
        assert resolve_pipeline_spec(api_service, "qa", settings).pipeline_name == (
            "shop-qa-api"
        )
