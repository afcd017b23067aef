from pathlib import Path

import pytest

from agentd.errors import TemplateNotFound
from agentd.sessions.templates import TemplateRegistry, host_variables, normalize_template_name
from common.text_template import render_template
from conftest import write_template


def test_normalize_template_name():
    assert normalize_template_name("@solo") == "solo"
    assert normalize_template_name("solo.yaml") == "solo"
    assert normalize_template_name(" @solo.yml ") == "solo"


def test_get_template(tmp_path: Path):
    write_template(tmp_path, "solo", tools=("read_file", "execute_shell"), labels=("ops",))
    registry = TemplateRegistry(tmp_path / "agents" / "templates", root_path=tmp_path)

    template = registry.get("@solo")
    assert template.name == "solo"
    assert template.tools == ("read_file", "execute_shell")
    assert template.labels == ("ops",)
    assert template.model == "gpt-4o"
    assert template.description == "solo agent"


def test_missing_template(tmp_path: Path):
    registry = TemplateRegistry(tmp_path / "agents" / "templates")
    with pytest.raises(TemplateNotFound):
        registry.get("ghost")


def test_system_prompt_variables(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("AGENTD_TEST_TEAM", "platform")
    write_template(tmp_path, "solo", system_prompt="Root ${root_path}, team ${env.AGENTD_TEST_TEAM}, os ${os.platform}")
    registry = TemplateRegistry(tmp_path / "agents" / "templates", root_path=tmp_path)

    prompt = registry.render_system_prompt(registry.get("solo"))

    assert prompt.startswith(f"Root {tmp_path}, team platform, os ")
    assert "${" not in prompt


def test_list_skips_broken_templates(tmp_path: Path):
    write_template(tmp_path, "good")
    (tmp_path / "agents" / "templates" / "bad.yaml").write_text("- not\n- a mapping\n")
    (tmp_path / "agents" / "templates" / "notes.txt").write_text("ignored")
    registry = TemplateRegistry(tmp_path / "agents" / "templates")

    assert [t.name for t in registry.list()] == ["good"]


def test_host_variables_include_root():
    variables = host_variables("/srv/work")
    assert variables["root_path"] == "/srv/work"
    assert "os.hostname" in variables


def test_render_template_leaves_unknown_placeholders():
    text = render_template("${cwd} ${who} ${other}", {"who": "me"}, cwd="/tmp")
    assert text == "/tmp me ${other}"
