"""End-to-end tests for the fleet pipeline (init, repair, setup, onboard)."""

import json
import shutil

import pytest
import yaml

from conftest import FakeCollector, FakeInvoker
from fleet.errors import FleetError, HookFailure, SecretResolutionGap, TemplateVarError
from fleet.services.assembler import load_manifest
from fleet.services.hook_runner import HookResult
from fleet.services.pipeline import FleetPipeline, PipelineProgress
from fleet.utils.redact import REDACTED

ENG_ENV = {
    "ANTHROPIC_API_KEY": "sk-ant-abc",
    "ENG_SLACK_BOT_TOKEN": "xoxb-eng",
    "ENG_SLACK_APP_TOKEN": "xapp-eng",
    "ENG_LINEAR_API_KEY": "lin_api_eng",
    "ENG_LINEAR_WEBHOOK_SECRET": "whsec-eng",
}

CHAT_PLUGIN = {
    "name": "chat",
    "secrets": {"botToken": {"envVar": "CHAT_BOT_TOKEN"}},
    "hooks": {
        "onboard": {
            "description": "Register the bot",
            "runOnce": True,
            "script": "register-bot",
            "inputs": {"adminToken": {"envVar": "CHAT_ADMIN_TOKEN", "prompt": "Admin token"}},
        },
    },
}


class RecordingProgress(PipelineProgress):
    def __init__(self):
        self.messages = []
        self.instruction_blocks = []

    def info(self, message):
        self.messages.append(("info", message))

    def success(self, message):
        self.messages.append(("success", message))

    def warn(self, message):
        self.messages.append(("warn", message))

    def instructions(self, title, text):
        self.instruction_blocks.append((title, text))

    @property
    def warnings(self):
        return [m for level, m in self.messages if level == "warn"]


def write_env(root, values):
    (root / ".env").write_text("".join(f"{k}={v}\n" for k, v in values.items()), encoding="utf-8")


@pytest.fixture
def progress():
    return RecordingProgress()


@pytest.fixture
def project(tmp_path, write_identity):
    write_identity("identities/eng", plugins=["slack", "openclaw-linear"], templateVars=["OWNER_NAME"])
    return tmp_path


def pipeline_for(root, progress=None, invoker=None, collector=None):
    return FleetPipeline(
        root,
        invoker=invoker or FakeInvoker(),
        collector=collector,
        progress=progress or RecordingProgress(),
        environ={},
    )


class TestInit:
    """Scaffolding a new project."""

    def test_scaffolds_from_discovered_identities(self, project, progress):
        manifest = pipeline_for(project, progress).init_project(provider="local", owner_name="Ada")
        assert [a.name for a in manifest.agents] == ["agent-eng"]
        assert manifest.agents[0].identity == "./identities/eng"
        assert manifest.secrets == {"anthropicApiKey": "${env:ANTHROPIC_API_KEY}"}
        assert manifest.agents[0].secrets["slackBotToken"] == "${env:ENG_SLACK_BOT_TOKEN}"

        assert (project / "fleet.yaml").exists()
        example = (project / ".env.example").read_text(encoding="utf-8")
        assert "ENG_SLACK_BOT_TOKEN=" in example
        assert "# ENG_LINEAR_USER_UUID=  # auto-resolved by `fleet setup`" in example
        gitignore = (project / ".gitignore").read_text(encoding="utf-8").splitlines()
        assert ".env" in gitignore and ".fleet/" in gitignore

    def test_warns_about_template_vars(self, tmp_path, write_identity, progress):
        write_identity("pm", templateVars=["TEAM_NAME"])
        pipeline_for(tmp_path, progress).init_project(provider="local", owner_name="Ada")
        assert any("TEAM_NAME" in w for w in progress.warnings)

    def test_no_identities(self, tmp_path):
        with pytest.raises(FleetError, match="No identity sources"):
            pipeline_for(tmp_path).init_project()

    def test_existing_manifest_is_repaired(self, project):
        pipeline_for(project).init_project(provider="local", owner_name="Ada")
        progress = RecordingProgress()
        manifest = pipeline_for(project, progress).init_project(provider="aws")
        assert manifest.provider == "local"
        assert any("running repair" in m for _, m in progress.messages)


class TestSetup:
    """The full setup pass."""

    @pytest.fixture
    def initialized(self, project):
        pipeline_for(project).init_project(provider="local", owner_name="Ada")
        return project

    def test_resolves_and_runs_resolve_hook(self, initialized, progress):
        write_env(initialized, ENG_ENV)
        invoker = FakeInvoker([HookResult(ok=True, output="uuid-eng\n")])
        result = pipeline_for(initialized, progress, invoker).setup()

        assert [m.key for m in result.resolved.missing] == ["linearUserUuid"]
        assert [m.key for m in result.deferred] == ["linearUserUuid"]
        assert result.auto_resolved.get("eng", "linearUserUuid") == "uuid-eng"
        assert invoker.calls[0]["env"]["LINEAR_API_KEY"] == "lin_api_eng"

        saved = load_manifest(initialized / "fleet.yaml")
        linear_config = saved.agents[0].plugins["openclaw-linear"]
        assert linear_config == {"linearUserUuid": "uuid-eng", "agentId": "agent-eng"}
        assert saved.agents[0].secrets["slackAppToken"] == "${env:ENG_SLACK_APP_TOKEN}"

        agent = result.provisioning["agents"][0]
        assert agent["secrets"]["slackBotToken"] == "xoxb-eng"
        assert agent["isSecret"]["linearUserUuid"] is False
        assert agent["isSecret"]["slackBotToken"] is True
        assert agent["autoResolved"] == {"linearUserUuid": "uuid-eng"}
        linear = next(p for p in agent["plugins"] if p["name"] == "openclaw-linear")
        assert "linearUserUuid" not in linear["config"]

    def test_second_run_reuses_resolved_value(self, initialized):
        write_env(initialized, ENG_ENV)
        pipeline_for(initialized, invoker=FakeInvoker([HookResult(ok=True, output="uuid-eng")])).setup()
        invoker = FakeInvoker()
        result = pipeline_for(initialized, invoker=invoker).setup()
        assert invoker.calls == []
        assert result.auto_resolved.get("eng", "linearUserUuid") == "uuid-eng"

    def test_gap_reports_everything_and_writes_nothing(self, initialized):
        env = dict(ENG_ENV)
        del env["ANTHROPIC_API_KEY"]
        del env["ENG_SLACK_APP_TOKEN"]
        write_env(initialized, env)
        before = (initialized / "fleet.yaml").read_text(encoding="utf-8")

        invoker = FakeInvoker()
        with pytest.raises(SecretResolutionGap) as exc_info:
            pipeline_for(initialized, invoker=invoker).setup()

        assert {m.env_var for m in exc_info.value.missing} == {"ANTHROPIC_API_KEY", "ENG_SLACK_APP_TOKEN"}
        assert "ENG_SLACK_APP_TOKEN" in exc_info.value.report
        assert invoker.calls == []
        assert (initialized / "fleet.yaml").read_text(encoding="utf-8") == before

    def test_missing_env_file(self, initialized):
        with pytest.raises(FleetError, match="not found"):
            pipeline_for(initialized).setup()

    def test_process_env_wins(self, initialized):
        write_env(initialized, {**ENG_ENV, "ENG_SLACK_BOT_TOKEN": "xoxb-file"})
        pipeline = FleetPipeline(
            initialized, invoker=FakeInvoker(default=HookResult(ok=True, output="u")),
            progress=RecordingProgress(), environ={"ENG_SLACK_BOT_TOKEN": "xoxb-process"},
        )
        result = pipeline.setup()
        assert result.resolved.for_agent("agent-eng")["slackBotToken"] == "xoxb-process"

    def test_skip_hooks(self, initialized, progress):
        write_env(initialized, ENG_ENV)
        invoker = FakeInvoker()
        result = pipeline_for(initialized, progress, invoker).setup(skip_hooks=True)
        assert invoker.calls == []
        assert result.auto_resolved.to_dict() == {}
        assert any("--skip-hooks" in w for w in progress.warnings)

    def test_resolve_hook_failure_aborts(self, initialized):
        write_env(initialized, ENG_ENV)
        before = (initialized / "fleet.yaml").read_text(encoding="utf-8")
        invoker = FakeInvoker([HookResult(ok=False, error="Hook timed out after 30s")])
        with pytest.raises(HookFailure, match="timed out"):
            pipeline_for(initialized, invoker=invoker).setup()
        assert (initialized / "fleet.yaml").read_text(encoding="utf-8") == before

    def test_validator_warnings_do_not_block(self, initialized, progress):
        write_env(initialized, {**ENG_ENV, "ENG_SLACK_BOT_TOKEN": "not-a-bot-token"})
        result = pipeline_for(initialized, progress, FakeInvoker(default=HookResult(ok=True, output="u"))).setup()
        assert [w.key for w in result.warnings] == ["slackBotToken"]
        assert any("slackBotToken" in w for w in progress.warnings)

    def test_template_vars_fatal(self, tmp_path, write_identity):
        write_identity("pm", templateVars=["TEAM_NAME"])
        pipeline_for(tmp_path).init_project(provider="local", owner_name="Ada")
        with pytest.raises(TemplateVarError, match="TEAM_NAME"):
            pipeline_for(tmp_path).setup()

    def test_required_auto_resolvable_without_hook_is_a_gap(self, tmp_path, write_identity):
        plugin = {"name": "lookup", "secrets": {"userId": {"envVar": "LOOKUP_USER_ID", "autoResolvable": True}}}
        write_identity("ops", plugins=["lookup"], extra_files={"plugins/lookup.yaml": yaml.safe_dump(plugin)})
        pipeline_for(tmp_path).init_project(provider="local", owner_name="Ada")
        write_env(tmp_path, {"ANTHROPIC_API_KEY": "sk-ant-x"})
        with pytest.raises(SecretResolutionGap) as exc_info:
            pipeline_for(tmp_path).setup()
        assert [m.env_var for m in exc_info.value.missing] == ["OPS_LOOKUP_USER_ID"]


class TestOnboard:
    """Onboard hooks."""

    @pytest.fixture
    def chat_project(self, tmp_path, write_identity):
        write_identity("sup", plugins=["chat"], extra_files={"plugins/chat.yaml": yaml.safe_dump(CHAT_PLUGIN)})
        pipeline_for(tmp_path).init_project(provider="local", owner_name="Ada")
        return tmp_path

    def test_instructions_redacted(self, chat_project, progress):
        write_env(chat_project, {"ANTHROPIC_API_KEY": "sk-ant-x", "CHAT_ADMIN_TOKEN": "admin-secret-1"})
        invoker = FakeInvoker([HookResult(ok=True, output="Done. Admin token admin-secret-1 rotated.")])
        result = pipeline_for(chat_project, progress, invoker).onboard()
        outcome = next(o for o in result.hook_outcomes if o.kind == "onboard")
        assert outcome.instructions == f"Done. Admin token {REDACTED} rotated."
        assert progress.instruction_blocks[0][1] == outcome.instructions

    def test_run_once_skipped_when_configured(self, chat_project, progress):
        write_env(chat_project, {"ANTHROPIC_API_KEY": "sk-ant-x", "SUP_CHAT_BOT_TOKEN": "bot"})
        collector = FakeCollector()
        invoker = FakeInvoker()
        result = pipeline_for(chat_project, progress, invoker, collector).onboard()
        assert invoker.calls == []
        assert collector.prompts == []
        assert [o.skipped for o in result.hook_outcomes if o.kind == "onboard"] == [True]

    def test_onboard_tolerates_missing_secrets(self, chat_project, progress):
        write_env(chat_project, {})
        collector = FakeCollector(["typed-admin"])
        invoker = FakeInvoker()
        pipeline_for(chat_project, progress, invoker, collector).onboard()
        assert collector.prompts == ["Admin token"]
        assert invoker.calls[0]["env"]["CHAT_ADMIN_TOKEN"] == "typed-admin"
        assert any("still missing" in w for w in progress.warnings)

    def test_setup_without_onboard_flag_mentions_hooks(self, chat_project, progress):
        write_env(chat_project, {"ANTHROPIC_API_KEY": "sk-ant-x", "SUP_CHAT_BOT_TOKEN": "bot"})
        invoker = FakeInvoker()
        pipeline_for(chat_project, progress, invoker).setup()
        assert invoker.calls == []
        assert any("fleet onboard" in m for _, m in progress.messages)


class TestRepair:
    """Reconciling the manifest with identity sources on disk."""

    def test_moved_identity_rematched(self, project, write_identity, progress):
        pipeline_for(project).init_project(provider="local", owner_name="Ada")
        shutil.move(str(project / "identities" / "eng"), str(project / "agents-moved"))
        write_identity("pm")

        result = pipeline_for(project, progress).repair()
        assert result.manifest.agents[0].identity == "./agents-moved"
        assert result.orphaned_sources == ["./pm"]
        assert result.flagged_agents == []
        assert len(result.manifest.agents) == 1
        assert load_manifest(project / "fleet.yaml").agents[0].identity == "./agents-moved"

    def test_unmatched_agent_kept(self, project, progress):
        pipeline_for(project).init_project(provider="local", owner_name="Ada")
        shutil.rmtree(project / "identities")
        result = pipeline_for(project, progress).repair()
        assert result.flagged_agents == ["agent-eng"]
        assert result.manifest.agents[0].identity == "./identities/eng"
        assert result.manifest.secrets == {"anthropicApiKey": "${env:ANTHROPIC_API_KEY}"}
        assert any("check it manually" in w for w in progress.warnings)

    def test_refreshes_secrets_for_new_plugin(self, project, write_identity):
        pipeline_for(project).init_project(provider="local", owner_name="Ada")
        write_identity("identities/eng", plugins=["slack", "openclaw-linear"], deps=["gh"], templateVars=["OWNER_NAME"])
        result = pipeline_for(project).repair()
        assert result.manifest.agents[0].secrets["githubToken"] == "${env:ENG_GITHUB_TOKEN}"


class TestSecretsStatus:
    def test_statuses(self, project):
        pipeline_for(project).init_project(provider="aws", owner_name="Ada")
        write_env(project, {"ANTHROPIC_API_KEY": "sk-ant-x", "ENG_SLACK_BOT_TOKEN": "xoxb-1"})
        statuses = {(s.agent, s.key): s.status for s in pipeline_for(project).secrets_status()}
        assert statuses[(None, "anthropicApiKey")] == "set"
        assert statuses[(None, "tailscaleApiKey")] == "optional"
        assert statuses[("agent-eng", "slackBotToken")] == "set"
        assert statuses[("agent-eng", "slackAppToken")] == "missing"
        assert statuses[("agent-eng", "linearUserUuid")] == "auto"

    def test_no_env_file_is_not_fatal(self, project):
        pipeline_for(project).init_project(provider="local", owner_name="Ada")
        statuses = pipeline_for(project).secrets_status()
        assert {s.status for s in statuses} <= {"missing", "auto"}


TEAM_PLUGIN = {
    "name": "team",
    "secrets": {"teamId": {"envVar": "TEAM_ID", "scope": "global", "autoResolvable": True, "isSecret": False}},
    "hooks": {"resolve": {"teamId": "team-cli whoami"}},
}


class TestGlobalPluginSecrets:
    """Plugin secrets declared with global scope."""

    @pytest.fixture
    def team_project(self, tmp_path, write_identity):
        for name in ("eng", "pm"):
            write_identity(name, plugins=["team"], extra_files={"plugins/team.json": json.dumps(TEAM_PLUGIN)})
        pipeline_for(tmp_path).init_project(provider="local", owner_name="Ada")
        return tmp_path

    def test_resolved_global_is_not_a_gap(self, team_project):
        write_env(team_project, {"ANTHROPIC_API_KEY": "sk-ant-x", "TEAM_ID": "T123"})
        invoker = FakeInvoker()
        result = pipeline_for(team_project, invoker=invoker).setup()
        assert invoker.calls == []
        assert result.resolved.global_secrets["teamId"] == "T123"
        assert result.resolved.missing == []
        assert result.provisioning["isSecret"]["teamId"] is False

    def test_resolve_hook_fills_global(self, team_project):
        write_env(team_project, {"ANTHROPIC_API_KEY": "sk-ant-x"})
        invoker = FakeInvoker(default=HookResult(ok=True, output="T-hook\n"))
        result = pipeline_for(team_project, invoker=invoker).setup()
        assert result.auto_resolved.get("eng", "teamId") == "T-hook"
        assert [m.env_var for m in result.deferred] == ["TEAM_ID"]

    def test_unresolved_global_reported_once(self, team_project):
        write_env(team_project, {"ANTHROPIC_API_KEY": "sk-ant-x"})
        with pytest.raises(SecretResolutionGap) as exc_info:
            pipeline_for(team_project).setup(skip_hooks=True)
        assert [(m.env_var, m.agent) for m in exc_info.value.missing] == [("TEAM_ID", None)]

    def test_env_example_comments_out_global(self, team_project):
        example = (team_project / ".env.example").read_text(encoding="utf-8")
        assert "# TEAM_ID=  # auto-resolved by `fleet setup`" in example
