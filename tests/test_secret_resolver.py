"""Tests for the secret reference resolver."""

import pytest

from conftest import make_agent
from fleet.errors import MissingSecret
from fleet.plugins.registry import PluginRegistry
from fleet.services.secret_resolver import (
    format_missing_report,
    load_env_secrets,
    run_validators,
    split_missing,
)
from fleet.services.secret_schema import build_manifest_secrets

AWS_GLOBALS = {
    "ANTHROPIC_API_KEY": "sk-ant-test-key",
    "TAILSCALE_AUTH_KEY": "tskey-auth-abc",
    "TAILNET_DNS_NAME": "fleet.ts.net",
    "TAILSCALE_API_KEY": "tskey-api-abc",
}


@pytest.fixture
def slack_schema():
    agents = [make_agent("eng", plugins=["slack"])]
    return build_manifest_secrets("aws", agents, PluginRegistry())


def resolve(schema, env):
    return load_env_secrets(schema.global_refs, schema.per_agent, env)


class TestSlackScenarios:
    """One aws agent with the slack plugin."""

    def test_all_variables_supplied(self, slack_schema):
        env = {**AWS_GLOBALS, "ENG_SLACK_BOT_TOKEN": "xoxb-1", "ENG_SLACK_APP_TOKEN": "xapp-1"}
        result = resolve(slack_schema, env)
        assert result.per_agent["agent-eng"] == {"slackBotToken": "xoxb-1", "slackAppToken": "xapp-1"}
        assert result.missing == []

    def test_app_token_absent(self, slack_schema):
        env = {**AWS_GLOBALS, "ENG_SLACK_BOT_TOKEN": "xoxb-1"}
        result = resolve(slack_schema, env)
        assert result.missing == [
            MissingSecret(key="slackAppToken", env_var="ENG_SLACK_APP_TOKEN", agent="agent-eng")
        ]
        assert result.per_agent["agent-eng"] == {"slackBotToken": "xoxb-1"}

    def test_empty_value_counts_as_missing(self, slack_schema):
        env = {**AWS_GLOBALS, "ENG_SLACK_BOT_TOKEN": "", "ENG_SLACK_APP_TOKEN": "xapp-1"}
        result = resolve(slack_schema, env)
        assert [m.key for m in result.missing] == ["slackBotToken"]


class TestExhaustiveness:
    """Every declared key ends up resolved or missing, never both or neither."""

    @pytest.mark.parametrize("env", [
        {},
        AWS_GLOBALS,
        {"ENG_SLACK_BOT_TOKEN": "xoxb-1", "TAILNET_DNS_NAME": "x.ts.net"},
        {**AWS_GLOBALS, "ENG_SLACK_BOT_TOKEN": "xoxb-1", "ENG_SLACK_APP_TOKEN": "xapp-1"},
    ])
    def test_partition(self, slack_schema, env):
        result = resolve(slack_schema, env)
        declared = {(None, k) for k in slack_schema.global_refs}
        declared |= {(a, k) for a, refs in slack_schema.per_agent.items() for k in refs}
        resolved = {(None, k) for k in result.global_secrets}
        resolved |= {(a, k) for a, secrets in result.per_agent.items() for k in secrets}
        missing = {(m.agent, m.key) for m in result.missing}
        assert resolved.isdisjoint(missing)
        assert resolved | missing == declared

    def test_literal_values_resolve_unchanged(self):
        result = load_env_secrets({"region": "eu-west-1"}, {"agent-eng": {"token": "${env:NOPE}"}}, {})
        assert result.global_secrets == {"region": "eu-west-1"}
        assert result.missing == [MissingSecret(key="token", env_var="NOPE", agent="agent-eng")]

    def test_agents_without_refs_skipped(self):
        result = load_env_secrets({}, {"agent-eng": None, "agent-pm": {}}, {})
        assert result.per_agent == {}
        assert result.missing == []


class TestSecretValues:
    """Which resolved values count as secret material."""

    def test_non_secret_keys_excluded(self, slack_schema):
        env = {**AWS_GLOBALS, "ENG_SLACK_BOT_TOKEN": "xoxb-1"}
        values = resolve(slack_schema, env).secret_values(slack_schema)
        assert "fleet.ts.net" not in values
        assert "tskey-auth-abc" in values
        assert "xoxb-1" in values

    def test_unknown_keys_count_as_secret(self, slack_schema):
        result = load_env_secrets({"manualToken": "${env:MANUAL}"}, {}, {"MANUAL": "m-value"})
        assert result.secret_values(slack_schema) == ["m-value"]

    def test_scoped_overlays_agent_values(self):
        result = load_env_secrets(
            {"teamId": "${env:TEAM_ID}"}, {"agent-eng": {"botToken": "${env:ENG_BOT}"}},
            {"TEAM_ID": "T1", "ENG_BOT": "b-1"},
        )
        assert result.scoped("agent-eng") == {"teamId": "T1", "botToken": "b-1"}
        assert result.scoped("agent-pm") == {"teamId": "T1"}


class TestValidators:
    """Validator warnings never block resolution."""

    def test_bad_prefix_warns(self, slack_schema):
        env = {**AWS_GLOBALS, "ENG_SLACK_BOT_TOKEN": "nope", "ENG_SLACK_APP_TOKEN": "xapp-1"}
        result = resolve(slack_schema, env)
        warnings = run_validators(result, slack_schema.validators)
        assert len(warnings) == 1
        assert warnings[0].key == "slackBotToken"
        assert warnings[0].agent == "agent-eng"
        assert warnings[0].message == "Must start with xoxb-"
        assert result.per_agent["agent-eng"]["slackBotToken"] == "nope"

    def test_global_suffix_check(self, slack_schema):
        env = {**AWS_GLOBALS, "TAILNET_DNS_NAME": "fleet.example.com"}
        warnings = run_validators(resolve(slack_schema, env), slack_schema.validators)
        assert [(w.key, w.agent) for w in warnings] == [("tailnetDnsName", None)]

    def test_clean_values_no_warnings(self, slack_schema):
        env = {**AWS_GLOBALS, "ENG_SLACK_BOT_TOKEN": "xoxb-1", "ENG_SLACK_APP_TOKEN": "xapp-1"}
        assert run_validators(resolve(slack_schema, env), slack_schema.validators) == []


class TestGapHandling:
    """Splitting, filtering and reporting gaps."""

    @pytest.fixture
    def linear_schema(self):
        agents = [make_agent("eng", plugins=["openclaw-linear"])]
        return build_manifest_secrets("aws", agents, PluginRegistry())

    def test_split_defers_auto_and_optional(self, linear_schema):
        result = resolve(linear_schema, {})
        required, deferred = split_missing(result.missing, linear_schema)
        assert {m.key for m in deferred} == {"linearUserUuid", "tailscaleApiKey"}
        assert {m.key for m in required} == {
            "anthropicApiKey", "tailscaleAuthKey", "tailnetDnsName", "linearApiKey", "linearWebhookSecret",
        }

    def test_unknown_keys_are_required(self, linear_schema):
        gap = MissingSecret(key="handAdded", env_var="HAND_ADDED")
        assert split_missing([gap], linear_schema) == ([gap], [])

    def test_report_lists_every_gap(self, linear_schema):
        result = resolve(linear_schema, {})
        required, _ = split_missing(result.missing, linear_schema)
        report = format_missing_report(required, linear_schema, {"agent-eng": "Eng"})
        lines = report.splitlines()
        assert len(lines) == len(required)
        assert any(
            line.strip().startswith("ENG_LINEAR_API_KEY") and "Agent: Eng" in line
            and "must start with lin_api_" in line
            for line in lines
        )
        assert any(line.strip().startswith("TAILNET_DNS_NAME") and "Required" in line for line in lines)
