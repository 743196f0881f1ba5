"""
Tests for configuration loading and prompt definitions.
"""

import json

import pytest

from signal_desk.agent.models import AgentScoringConfig, ToolName
from signal_desk.config import load_config, news_config, save_config
from signal_desk.llm.loader import load_prompt, load_prompt_file


class TestConfig:

    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path / "missing.json")
        assert config["agent"]["max_tool_rounds"] == 10
        assert config["news"]["poll_interval_minutes"] == 120

    def test_file_merges_over_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"agent": {"target_selections": 3}, "llm_provider": "claude"}))
        config = load_config(path)

        assert config["agent"]["target_selections"] == 3
        assert config["agent"]["max_tool_rounds"] == 10
        assert config["llm_provider"] == "claude"

    def test_env_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv("NEWS_POLL_INTERVAL_MINUTES", "30")
        monkeypatch.setenv("NEWS_LOOKBACK_HOURS", "not-a-number")
        news = news_config(load_config(tmp_path / "missing.json"))

        assert news.poll_interval_minutes == 30
        assert news.lookback_hours == 24

    def test_unreadable_file_ignored(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        assert load_config(path)["llm_provider"] == "gemini"

    def test_save_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = load_config(path)
        config["agent"]["temperature"] = 0.1
        save_config(config, path)
        assert load_config(path)["agent"]["temperature"] == 0.1

    def test_scoring_config_overrides(self):
        base = AgentScoringConfig.from_dict({"max_tool_rounds": 4, "bogus": True})
        tuned = base.with_overrides(target_selections=2, model=None)

        assert base.max_tool_rounds == 4
        assert tuned.target_selections == 2
        assert tuned.model is None
        assert tuned.max_tool_rounds == 4


class TestPrompts:

    @pytest.mark.parametrize("name", [
        "selection_agent", "web_search", "attendee_research", "cross_reference",
        "knowledge_prune", "industry_scan", "content_universe", "briefing_entities",
    ])
    def test_bundled_prompts_load(self, name):
        prompt = load_prompt(name)
        assert prompt.name == name
        assert prompt.body
        assert 0 <= prompt.temperature <= 1

    def test_selection_prompt_lists_every_tool(self):
        body = load_prompt("selection_agent").body
        for tool in ToolName:
            assert tool.value in body

    def test_render_leaves_json_braces(self):
        rendered = load_prompt("selection_agent").render(target_count=5, candidate_count=12, name="Maya")
        assert "at most 5 of the 12" in rendered
        assert '{"tool"' in rendered

    def test_missing_frontmatter(self, tmp_path):
        path = tmp_path / "bare.md"
        path.write_text("Just a body")
        assert load_prompt_file(path) is None

    def test_missing_prompt_raises(self):
        with pytest.raises(FileNotFoundError):
            load_prompt("does_not_exist")
