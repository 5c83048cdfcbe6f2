"""Unit tests for server-binding advisories and the environment preamble."""

from __future__ import annotations

import pytest

from preview_plane.app.contracts import advise, environment_setup_script, validate_contract


def _contract(type_="node", dev="npm run dev", port=3000, env=None):
    return validate_contract(
        {"type": type_, "install": "true", "dev": dev, "port": port, "env": env or {}}
    )


class TestAdvise:
    def test_node_port_aware_command_has_no_warning(self):
        advisories = advise(_contract(dev="npm run dev"))
        severities = [a.severity for a in advisories]

        assert "warning" not in severities
        assert len(advisories) == 2

    def test_node_unknown_command_warns(self):
        advisories = advise(_contract(dev="node server.js"))

        assert advisories[0].severity == "warning"
        assert advisories[0].file == "package.json"
        assert any(isinstance(a.code, dict) and "express" in a.code for a in advisories)

    def test_python_unknown_command_warns(self):
        advisories = advise(_contract(type_="python", dev="python main.py", port=8000))
        assert advisories[0].severity == "warning"
        assert "0.0.0.0" in advisories[0].message

    def test_python_uvicorn_has_only_info(self):
        advisories = advise(
            _contract(type_="python", dev="uvicorn app:app --port $PORT", port=8000)
        )
        assert [a.severity for a in advisories] == ["info"]
        assert set(advisories[0].code) == {"fastapi", "flask"}

    def test_ruby_advisories(self):
        advisories = advise(_contract(type_="ruby", dev="rails s"))
        assert len(advisories) == 2
        assert advisories[1].file == "config/puma.rb"

    @pytest.mark.parametrize("type_", ["go", "java", "php", "rust", "other"])
    def test_other_types_have_no_advice(self, type_):
        assert advise(_contract(type_=type_, dev="run")) == []

    def test_to_dict_omits_empty_fields(self):
        advisory = advise(_contract(type_="python", dev="uvicorn app:app", port=8000))[0]
        payload = advisory.to_dict()

        assert payload["severity"] == "info"
        assert "file" not in payload
        assert "suggestion" not in payload
        assert isinstance(payload["code"], dict)


class TestEnvironmentSetupScript:
    def test_port_defaults_to_contract_port(self):
        script = environment_setup_script(_contract(port=4321))
        assert "export PORT=${PORT:-4321}" in script
        assert 'export BIND_ADDR="0.0.0.0"' in script

    def test_env_exported_sorted_and_quoted(self):
        script = environment_setup_script(
            _contract(env={"ZED": "last", "ALPHA": "it's quoted"})
        )
        lines = script.splitlines()

        alpha = lines.index("export ALPHA='it'\"'\"'s quoted'")
        zed = lines.index("export ZED=last")
        assert alpha < zed

    def test_no_env_section_when_empty(self):
        script = environment_setup_script(_contract())
        assert "Additional environment variables" not in script
