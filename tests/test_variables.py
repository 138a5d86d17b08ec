"""Tests for variable resolution: imports, merging, rendering and provenance."""

from pathlib import Path

import pytest
from test_utils import DotfilesTree, FakePlatformProbe

from dotfiles_mcp.engine import (
    CircularImportError,
    DotfilesConfig,
    ImportNotFoundError,
    StructuralParseError,
    TemplateRenderError,
    VariableConflictError,
    VariableLoader,
    VariableLoadOptions,
    get_variable,
    set_variable,
)


@pytest.fixture
def loader(tree: DotfilesTree, config: DotfilesConfig, probe: FakePlatformProbe) -> VariableLoader:
    return VariableLoader(config, tree.root, probe=probe)


class TestIndex:
    def test_missing_index_yields_facts_only(
        self, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        variables = loader.load_all_variables(options)

        assert set(variables) == {"Platform", "Env", "User"}
        assert variables["Platform"]["OS"] == "linux"
        assert variables["Env"] == {}
        assert variables["User"]["Home"] == "/home/tester"

    def test_index_variables_rendered(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables(
            """
            variables:
              user:
                name: Jane
              greeting: "hello {{ user.name }} on {{ Platform.OS }}"
            """
        )

        variables = loader.load_all_variables(options)

        assert variables["user"] == {"name": "Jane"}
        assert variables["greeting"] == "hello Jane on linux"
        assert variables["Platform"]["Hostname"] == "testhost"

    def test_empty_sections(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\nvariables:\n")
        assert set(loader.load_all_variables(options)) == {"Platform", "Env", "User"}

    def test_probe_called_once_per_run(
        self,
        tree: DotfilesTree,
        loader: VariableLoader,
        probe: FakePlatformProbe,
        options: VariableLoadOptions,
    ) -> None:
        tree.variables(
            """
            imports:
              - "{{ Platform.OS }}.yaml"
            variables:
              a: "{{ Platform.Arch }}"
            """
        )
        tree.variables("b: 2\n", name="linux.yaml")

        loader.load_all_variables(options)
        assert probe.calls == 1


class TestImports:
    def test_nested_maps_merge_across_files(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables(
            """
            imports:
              - user.yaml
            variables:
              user:
                email: jane@example.com
            """
        )
        tree.variables("user:\n  name: Jane\n", name="user.yaml")

        variables = loader.load_all_variables(options)
        assert variables["user"] == {"name": "Jane", "email": "jane@example.com"}

    def test_conflict_across_files(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - a.yaml\n  - b.yaml\n")
        tree.variables("editor: vim\n", name="a.yaml")
        tree.variables("editor: emacs\n", name="b.yaml")

        with pytest.raises(VariableConflictError) as exc:
            loader.load_all_variables(options)

        error = exc.value
        assert error.variable == "editor"
        assert error.existing_value == "vim"
        assert error.new_value == "emacs"
        assert error.existing_source.endswith("a.yaml")
        assert error.new_source.endswith("b.yaml")
        assert str(Path("variables/a.yaml")) in str(error)

    @pytest.mark.parametrize(("ci", "expected"), [("true", "ci-runner"), ("false", "laptop")])
    def test_conditional_import(
        self, tree: DotfilesTree, loader: VariableLoader, ci: str, expected: str
    ) -> None:
        tree.variables(
            """
            imports:
              - path: ci.yaml
                condition: 'Env.CI == "true"'
              - path: local.yaml
                condition: '!(Env.CI == "true")'
            """
        )
        tree.variables("machine: ci-runner\n", name="ci.yaml")
        tree.variables("machine: laptop\n", name="local.yaml")

        variables = loader.load_all_variables(VariableLoadOptions(environment={"CI": ci}))
        assert variables["machine"] == expected

    def test_condition_false_skips_missing_file(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables(
            """
            imports:
              - path: windows.yaml
                condition: 'Platform.OS == "windows"'
            variables:
              a: 1
            """
        )

        assert loader.load_all_variables(options)["a"] == 1

    def test_condition_sees_facts_not_variables(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables(
            """
            imports:
              - path: extra.yaml
                condition: "use_extra"
            variables:
              use_extra: true
            """
        )
        tree.variables("extra: yes\n", name="extra.yaml")

        assert "extra" not in loader.load_all_variables(options)

    def test_unresolved_placeholder_skips_import(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables(
            """
            imports:
              - "profiles/{{ Env.PROFILE }}.yaml"
              - "hosts/{{ Platform.Site.Name }}.yaml"
            variables:
              a: 1
            """
        )

        assert loader.load_all_variables(options)["a"] == 1

    def test_templated_path(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables('imports:\n  - "os/{{ Platform.OS }}.yaml"\n')
        tree.variables("package_manager: apt\n", name="os/linux.yaml")
        tree.variables("package_manager: brew\n", name="os/darwin.yaml")

        assert loader.load_all_variables(options)["package_manager"] == "apt"

    def test_platform_override(self, tree: DotfilesTree, loader: VariableLoader) -> None:
        tree.variables('imports:\n  - "os/{{ Platform.OS }}.yaml"\n')
        tree.variables("package_manager: apt\n", name="os/linux.yaml")
        tree.variables("package_manager: brew\n", name="os/darwin.yaml")

        variables = loader.load_all_variables(
            VariableLoadOptions(platform="darwin", hostname="mac", environment={})
        )

        assert variables["package_manager"] == "brew"
        assert variables["Platform"]["OS"] == "darwin"
        assert variables["Platform"]["Hostname"] == "mac"
        assert variables["Platform"]["Arch"] == "amd64"

    def test_missing_import_is_error(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - missing.yaml\n")

        with pytest.raises(ImportNotFoundError) as exc:
            loader.load_all_variables(options)
        assert exc.value.declared == "missing.yaml"

    def test_inline_import_variables(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables(
            """
            imports:
              - path: common.yaml
                variables:
                  editor: vim
                  user:
                    email: jane@example.com
            """
        )
        tree.variables("user:\n  name: Jane\n", name="common.yaml")

        variables = loader.load_all_variables(options)
        assert variables["editor"] == "vim"
        assert variables["user"] == {"name": "Jane", "email": "jane@example.com"}

    def test_inline_import_variables_conflict_with_file(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables(
            """
            imports:
              - path: common.yaml
                variables:
                  editor: emacs
            """
        )
        tree.variables("editor: vim\n", name="common.yaml")

        with pytest.raises(VariableConflictError):
            loader.load_all_variables(options)

    def test_index_shaped_import_recurses(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - a.yaml\n")
        tree.variables("imports:\n  - c.yaml\nvariables:\n  from_a: 1\n", name="a.yaml")
        tree.variables("variables:\n  from_c: 3\n", name="c.yaml")

        variables = loader.load_all_variables(options)
        assert variables["from_a"] == 1
        assert variables["from_c"] == 3
        assert "variables" not in variables


class TestImportCycles:
    def test_two_file_cycle(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - a.yaml\n")
        tree.variables("imports:\n  - b.yaml\n", name="a.yaml")
        tree.variables("imports:\n  - a.yaml\n", name="b.yaml")

        with pytest.raises(CircularImportError) as exc:
            loader.load_all_variables(options)

        assert [Path(p).name for p in exc.value.chain] == ["index.yaml", "a.yaml", "b.yaml"]
        assert Path(exc.value.path).name == "a.yaml"

    def test_index_importing_itself(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - index.yaml\n")

        with pytest.raises(CircularImportError):
            loader.load_all_variables(options)

    def test_chain_of_three_is_not_a_cycle(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - a.yaml\n")
        tree.variables("imports:\n  - b.yaml\nvariables:\n  a: 1\n", name="a.yaml")
        tree.variables("imports:\n  - c.yaml\nvariables:\n  b: 2\n", name="b.yaml")
        tree.variables("c: 3\n", name="c.yaml")

        variables = loader.load_all_variables(options)
        assert (variables["a"], variables["b"], variables["c"]) == (1, 2, 3)

    def test_diamond_import_is_not_a_cycle(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - a.yaml\n  - b.yaml\n")
        tree.variables("imports:\n  - common.yaml\nvariables:\n  a: 1\n", name="a.yaml")
        tree.variables("imports:\n  - common.yaml\nvariables:\n  b: 2\n", name="b.yaml")
        tree.variables("shell: zsh\n", name="common.yaml")

        variables = loader.load_all_variables(options)
        assert variables["shell"] == "zsh"
        assert len(loader.trace_variable("shell")) == 2

    def test_loader_reusable_after_failure(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - a.yaml\n")
        tree.variables("imports:\n  - index.yaml\n", name="a.yaml")
        with pytest.raises(CircularImportError):
            loader.load_all_variables(options)

        tree.variables("x: 1\n", name="a.yaml")
        assert loader.load_all_variables(options)["x"] == 1


class TestRendering:
    def test_lists_and_nested_maps_rendered(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables(
            """
            variables:
              packages:
                - "{{ Platform.OS }}-tools"
                - git
              paths:
                config: "{{ User.Home }}/.config"
                nested:
                  cache: "{{ paths.config }}/cache"
            """
        )

        variables = loader.load_all_variables(options)
        assert variables["packages"] == ["linux-tools", "git"]
        assert variables["paths"]["config"] == "/home/tester/.config"
        # Single pass: references see the raw value of other leaves
        assert variables["paths"]["nested"]["cache"] == "{{ User.Home }}/.config/cache"

    def test_non_string_values_pass_through(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("variables:\n  count: 3\n  enabled: true\n  ratio: 1.5\n  empty: null\n")

        variables = loader.load_all_variables(options)
        assert variables["count"] == 3
        assert variables["enabled"] is True
        assert variables["ratio"] == 1.5
        assert variables["empty"] is None

    def test_tree_key_wins_over_fact(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables(
            """
            variables:
              User:
                Name: custom
              who: "{{ User.Name }}"
            """
        )

        variables = loader.load_all_variables(options)
        assert variables["User"] == {"Name": "custom"}
        assert variables["who"] == "custom"

    def test_undefined_renders_empty_by_default(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables('variables:\n  token: "x{{ secrets.token }}y"\n')
        assert loader.load_all_variables(options)["token"] == "xy"

    def test_strict_templates(
        self, tree: DotfilesTree, probe: FakePlatformProbe, options: VariableLoadOptions
    ) -> None:
        tree.variables('variables:\n  token: "{{ secrets }}"\n')
        config = DotfilesConfig.model_validate({"settings": {"strict_templates": True}})

        with pytest.raises(TemplateRenderError, match="'secrets' is undefined"):
            VariableLoader(config, tree.root, probe=probe).load_all_variables(options)

    def test_render_error_names_file_and_key(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - ssh.yaml\n")
        tree.variables('ssh:\n  config: "Host {{ git.host }"\n', name="ssh.yaml")

        with pytest.raises(TemplateRenderError) as exc:
            loader.load_all_variables(options)

        assert exc.value.template_name == f"{Path('variables/ssh.yaml')}: ssh.config"
        assert exc.value.line == 1


class TestStructuralErrors:
    def test_invalid_yaml_in_import(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - broken.yaml\n")
        tree.variables("key: [unclosed\n", name="broken.yaml")

        with pytest.raises(StructuralParseError, match="invalid YAML syntax") as exc:
            loader.load_all_variables(options)
        assert exc.value.path.endswith("broken.yaml")

    def test_root_must_be_mapping(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("- a\n- b\n")

        with pytest.raises(StructuralParseError, match="must be a mapping"):
            loader.load_all_variables(options)

    def test_variables_block_must_be_mapping(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("variables:\n  - a\n")

        with pytest.raises(StructuralParseError, match="'variables' must be a mapping"):
            loader.load_all_variables(options)

    def test_imports_must_be_list(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports: common.yaml\n")

        with pytest.raises(StructuralParseError, match="'imports' must be a list"):
            loader.load_all_variables(options)

    def test_import_mixing_index_and_plain_keys(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports:\n  - mixed.yaml\n")
        tree.variables("imports: []\nuser:\n  name: x\n", name="mixed.yaml")

        with pytest.raises(StructuralParseError, match="unexpected top-level keys user") as exc:
            loader.load_all_variables(options)
        assert exc.value.path.endswith("mixed.yaml")

    def test_index_with_stray_top_level_key(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> None:
        tree.variables("imports: []\nvariables:\n  a: 1\nextra: 2\n")

        with pytest.raises(StructuralParseError, match="unexpected top-level keys extra"):
            loader.load_all_variables(options)


class TestProvenance:
    @pytest.fixture
    def traced(
        self, tree: DotfilesTree, loader: VariableLoader, options: VariableLoadOptions
    ) -> VariableLoader:
        tree.variables(
            """
            imports:
              - user.yaml
            variables:
              greeting: "hello {{ user.name }}"
              user:
                shell: zsh
            """
        )
        tree.variables(
            """
            # identity
            user:
              name: Jane
              email: jane@example.com
            """,
            name="user.yaml",
        )
        loader.load_all_variables(options)
        return loader

    def test_sources_record_raw_and_processed(self, traced: VariableLoader) -> None:
        [greeting] = traced.trace_variable("greeting")

        assert greeting.raw_value == "hello {{ user.name }}"
        assert greeting.processed_value == "hello Jane"
        assert greeting.source.endswith("index.yaml")
        assert greeting.line == 4

    def test_trace_top_level_key_lists_every_file(self, traced: VariableLoader) -> None:
        traces = traced.trace_variable("user")

        assert [Path(t.source).name for t in traces] == ["user.yaml", "index.yaml"]
        assert [t.line for t in traces] == [2, 5]

    def test_trace_dotted_key_returns_nested_value_and_line(self, traced: VariableLoader) -> None:
        [email] = traced.trace_variable("user.email")

        assert email.key == "user.email"
        assert email.raw_value == "jane@example.com"
        assert email.processed_value == "jane@example.com"
        assert Path(email.source).name == "user.yaml"
        assert email.line == 4

    def test_trace_unknown_key(self, traced: VariableLoader) -> None:
        assert traced.trace_variable("nope") == []
        assert traced.trace_variable("user.nope") == []

    def test_sources_sorted_by_file(self, traced: VariableLoader) -> None:
        sources = [s.source for s in traced.get_variable_sources()]
        assert sources == sorted(sources)
        assert len(sources) == 3

    def test_reload_resets_sources(
        self, traced: VariableLoader, options: VariableLoadOptions
    ) -> None:
        traced.load_all_variables(options)
        assert len(traced.get_variable_sources()) == 3


class TestDottedHelpers:
    def test_get_variable(self) -> None:
        tree = {"user": {"name": "Jane"}, "pkgs": ["git", "vim"]}

        assert get_variable("user.name", tree) == "Jane"
        assert get_variable("pkgs.1", tree) == "vim"
        assert get_variable("user.email", tree) is None
        assert get_variable("user.email", tree, "n/a") == "n/a"
        assert get_variable("pkgs.5", tree, "n/a") == "n/a"

    def test_set_variable_creates_parents(self) -> None:
        tree: dict = {"user": "scalar"}
        set_variable("user.name", "Jane", tree)
        set_variable("a.b.c", 1, tree)

        assert tree == {"user": {"name": "Jane"}, "a": {"b": {"c": 1}}}
