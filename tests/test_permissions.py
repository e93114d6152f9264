"""Tests for permissions.py — loading, rule order, path and command confinement."""
import json
import os

import pytest

from assistant.agents import CODER, ORGANIZER, SYSTEM, Agent
from assistant.permissions import (
    CommandValidator,
    PathResolver,
    PermissionGate,
    PermissionsConfig,
    check_agent_toolset,
    check_confirmation,
    check_deny_list,
    load_permissions,
    permissions_candidates,
)
from assistant.tools.contract import ErrorCode, ToolError
from assistant.tools.registry import builtin_tools


def _spec(name):
    return builtin_tools()[name].spec


class TestLoadPermissions:
    def test_missing_file_denies_all(self, settings):
        config = load_permissions(settings)
        assert config.allow_paths == ()
        assert config.allow_commands == ()
        assert config.source_path == os.path.join(settings.base_dir, "permissions.json")

    def test_loads_base_dir_file(self, settings):
        path = os.path.join(settings.base_dir, "permissions.json")
        with open(path, "w") as f:
            json.dump({"allow_paths": ["."], "allow_commands": ["ls"],
                       "require_confirmation_for": ["delete_file"], "deny_tools": ["run_cmd"]}, f)
        config = load_permissions(settings)
        assert config.allow_paths == (".",)
        assert config.deny_tools == ("run_cmd",)
        assert config.source_path == path

    def test_env_path_wins_over_base_dir(self, settings, tmp_path):
        env_file = tmp_path / "env_perms.json"
        env_file.write_text(json.dumps({"allow_commands": ["echo"]}))
        (tmp_path / "work" / "permissions.json").write_text(json.dumps({"allow_commands": ["ls"]}))
        s = settings.model_copy(update={"permissions_path": str(env_file)})
        assert load_permissions(s).allow_commands == ("echo",)

    def test_explicit_path_first(self, settings, tmp_path):
        explicit = tmp_path / "explicit.json"
        explicit.write_text(json.dumps({"deny_tools": ["remember"]}))
        assert permissions_candidates(settings, str(explicit))[0] == str(explicit)
        assert load_permissions(settings, str(explicit)).deny_tools == ("remember",)

    def test_data_dir_fallback(self, settings):
        path = os.path.join(settings.data_dir, "permissions.json")
        with open(path, "w") as f:
            json.dump({"allow_paths": ["docs"]}, f)
        assert load_permissions(settings).allow_paths == ("docs",)

    @pytest.mark.parametrize("body", ["{not json", "[1, 2]", '{"allow_paths": "notalist"}'])
    def test_invalid_file_denies_all(self, settings, body):
        path = os.path.join(settings.base_dir, "permissions.json")
        with open(path, "w") as f:
            f.write(body)
        config = load_permissions(settings)
        assert config == PermissionsConfig(source_path=path)

    def test_config_is_frozen(self):
        config = PermissionsConfig(allow_paths=(".",))
        with pytest.raises(Exception):
            config.allow_paths = ("/",)


class TestRules:
    def test_deny_list(self):
        err = check_deny_list("run_cmd", PermissionsConfig(deny_tools=("run_cmd",)))
        assert err.code == ErrorCode.DENIED_TOOL
        assert check_deny_list("remember", PermissionsConfig(deny_tools=("run_cmd",))) is None

    def test_confirmation_required(self):
        config = PermissionsConfig(require_confirmation_for=("write_file",), source_path="/etc/assistant/permissions.json")
        err = check_confirmation("write_file", {"path": "a"}, config)
        assert err.code == ErrorCode.CONFIRMATION_REQUIRED
        assert "confirm: true" in err.message
        assert "/etc/assistant/permissions.json" in err.message
        assert err.details["permissions_path"] == "/etc/assistant/permissions.json"

    def test_confirmation_satisfied_only_by_true(self):
        config = PermissionsConfig(require_confirmation_for=("write_file",))
        assert check_confirmation("write_file", {"confirm": True}, config) is None
        assert check_confirmation("write_file", {"confirm": "true"}, config) is not None
        assert check_confirmation("write_file", {"confirm": 1}, config) is not None

    def test_agent_toolset(self):
        assert check_agent_toolset("read_file", CODER) is None
        err = check_agent_toolset("remember", CODER)
        assert err.code == ErrorCode.DENIED_AGENT_TOOLSET
        assert err.details == {"tool": "remember", "agent": "coder"}

    def test_system_agent_bypasses_toolset(self):
        assert check_agent_toolset("anything_at_all", SYSTEM) is None

    def test_plugin_kind_is_checked(self):
        agent = Agent(name="ext", kind="plugin", tools=frozenset({"recall"}))
        assert check_agent_toolset("recall", agent) is None
        assert check_agent_toolset("remember", agent) is not None


class TestGateOrder:
    def _gate(self, settings, **kw):
        return PermissionGate(PermissionsConfig(**kw), settings.base_dir)

    def test_deny_beats_confirmation(self, settings):
        gate = self._gate(settings, deny_tools=("write_file",), require_confirmation_for=("write_file",))
        err = gate.check(_spec("write_file"), {"path": "a.txt", "content": "x"}, SYSTEM)
        assert err.code == ErrorCode.DENIED_TOOL

    def test_confirmation_beats_agent(self, settings):
        gate = self._gate(settings, require_confirmation_for=("write_file",))
        err = gate.check(_spec("write_file"), {"path": "a.txt", "content": "x"}, ORGANIZER)
        assert err.code == ErrorCode.CONFIRMATION_REQUIRED

    def test_agent_beats_confinement(self, settings):
        gate = self._gate(settings, allow_paths=())
        err = gate.check(_spec("read_file"), {"path": "/etc/passwd"}, ORGANIZER)
        assert err.code == ErrorCode.DENIED_AGENT_TOOLSET

    def test_confinement_last(self, settings):
        gate = self._gate(settings, allow_paths=(".",))
        err = gate.check(_spec("delete_file"), {"path": "/etc/passwd"}, CODER)
        assert err.code == ErrorCode.DENIED_PATH_ALLOWLIST
        assert err.details["operation"] == "write"

    def test_command_confinement(self, settings):
        gate = self._gate(settings, allow_commands=("ls",))
        assert gate.check(_spec("run_cmd"), {"command": "ls -la"}, SYSTEM) is None
        err = gate.check(_spec("run_cmd"), {"command": "rm -rf /"}, SYSTEM)
        assert err.code == ErrorCode.DENIED_COMMAND_ALLOWLIST

    def test_tools_without_resources_pass(self, settings):
        gate = self._gate(settings)
        assert gate.check(_spec("get_time"), {}, SYSTEM) is None

    def test_all_clear(self, settings):
        gate = self._gate(settings, allow_paths=(".",), require_confirmation_for=("write_file",))
        assert gate.check(_spec("write_file"), {"path": "a.txt", "content": "x", "confirm": True}, CODER) is None


@pytest.fixture
def tree(tmp_path):
    """work/{docs,src,sub}, outside/secret.txt, and a symlink work/docs/escape → outside."""
    work = tmp_path / "work"
    for d in ("docs", "src", "sub"):
        (work / d).mkdir(parents=True)
    (work / "docs" / "readme.md").write_text("hi")
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("secret")
    os.symlink(outside, work / "docs" / "escape")
    os.symlink(outside / "secret.txt", work / "docs" / "secret_link.txt")
    return tmp_path


ALLOWLISTS = [
    (".",),
    ("docs",),
    ("docs", "src"),
    ("sub",),
]

TRAVERSALS = [
    "../outside/secret.txt",
    "docs/../../outside/secret.txt",
    "../../../../../../etc/passwd",
    "/etc/passwd",
    "docs/escape/secret.txt",
    "docs/escape/../outside/secret.txt",
    "docs/secret_link.txt",
    "src/../../outside",
]


class TestPathResolver:
    @pytest.mark.parametrize("allow", ALLOWLISTS)
    @pytest.mark.parametrize("raw", TRAVERSALS)
    def test_escapes_denied(self, tree, allow, raw):
        resolver = PathResolver(str(tree / "work"), allow)
        result = resolver.resolve(raw)
        assert isinstance(result, ToolError)
        assert result.code == ErrorCode.DENIED_PATH_ALLOWLIST

    def test_absolute_allow_entry(self, tree):
        resolver = PathResolver(str(tree / "work"), [str(tree / "work" / "docs")])
        assert resolver.resolve("docs/readme.md") == os.path.realpath(tree / "work" / "docs" / "readme.md")
        assert isinstance(resolver.resolve("src/x.py"), ToolError)

    def test_inside_root_resolves_canonical(self, tree):
        resolver = PathResolver(str(tree / "work"), ["docs"])
        assert resolver.resolve("docs/./readme.md") == os.path.realpath(tree / "work" / "docs" / "readme.md")

    def test_nonexistent_target_under_root(self, tree):
        resolver = PathResolver(str(tree / "work"), ["docs"])
        result = resolver.resolve("docs/new/dir/file.txt")
        assert result == os.path.join(os.path.realpath(tree / "work" / "docs"), "new", "dir", "file.txt")

    def test_root_itself_allowed(self, tree):
        resolver = PathResolver(str(tree / "work"), ["."])
        assert resolver.resolve(".") == os.path.realpath(tree / "work")

    def test_sibling_prefix_not_allowed(self, tree):
        (tree / "work" / "docs2").mkdir()
        resolver = PathResolver(str(tree / "work"), ["docs"])
        assert isinstance(resolver.resolve("docs2/x"), ToolError)

    def test_empty_allowlist_fails_closed(self, tree):
        resolver = PathResolver(str(tree / "work"), [])
        assert isinstance(resolver.resolve("docs/readme.md"), ToolError)

    @pytest.mark.parametrize("raw", [".git/config", ".env", "node_modules/x/index.js", "docs/.GIT/HEAD"])
    def test_sensitive_components(self, tree, raw):
        resolver = PathResolver(str(tree / "work"), ["."])
        result = resolver.resolve(raw)
        assert isinstance(result, ToolError)
        assert "protected" in result.message

    @pytest.mark.parametrize("raw", ["", "   ", None, 42, "a\x00b"])
    def test_invalid_input(self, tree, raw):
        resolver = PathResolver(str(tree / "work"), ["."])
        assert isinstance(resolver.resolve(raw), ToolError)


class TestCommandValidator:
    def test_allowed(self):
        v = CommandValidator(["ls", "echo"])
        assert v.split("ls -la /tmp") == ["ls", "-la", "/tmp"]

    def test_path_to_allowed_name_denied(self):
        err = CommandValidator(["ls"]).validate("/elsewhere/ls")
        assert err.code == ErrorCode.DENIED_COMMAND_ALLOWLIST
        assert err.details == {"command": "/elsewhere/ls"}

    @pytest.mark.parametrize("exe", ["./ls", "bin/ls", "..\\ls"])
    def test_relative_paths_denied(self, exe):
        assert CommandValidator(["ls"]).validate(exe) is not None

    def test_split_checks_exact_argv0(self):
        assert isinstance(CommandValidator(["ls"]).split("/tmp/x/ls -la"), ToolError)

    def test_denied(self):
        err = CommandValidator(["ls"]).validate("rm")
        assert err.code == ErrorCode.DENIED_COMMAND_ALLOWLIST
        assert err.details == {"command": "rm"}

    @pytest.mark.parametrize("line", ["", "   ", "echo 'unterminated", None])
    def test_unusable_lines(self, line):
        assert isinstance(CommandValidator(["echo"]).split(line), ToolError)

    def test_shell_syntax_is_not_interpreted(self):
        argv = CommandValidator(["echo"]).split("echo hi; rm -rf /")
        assert argv == ["echo", "hi;", "rm", "-rf", "/"]

    def test_empty_allowlist(self):
        assert CommandValidator([]).validate("ls") is not None
