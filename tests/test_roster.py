"""Tests for roster.py: default roster, detection rules and roster loading."""

import dataclasses
import json
from unittest.mock import MagicMock, patch

import pytest

from roster import (
    AgentQuerySpec,
    ConfigurationError,
    agent_from_dict,
    default_roster,
    get_search_query,
    load_roster_from_file,
    load_roster_from_hf,
)


class TestDefaultRoster:

    def test_contribution_order(self):
        ids = [agent.id for agent in default_roster().contributions]
        assert ids == ['copilot', 'cursor', 'codex', 'devin', 'claude', 'jules', 'codegen']

    def test_review_agents_use_commenter(self):
        assert all(agent.query.startswith('commenter:') for agent in default_roster().reviews)

    def test_agents_are_immutable(self):
        agent = default_roster().contributions[0]
        with pytest.raises(dataclasses.FrozenInstanceError):
            agent.query = 'head:other/'


class TestGetSearchQuery:

    def test_branch_prefix_wins(self):
        detection = {'branchPrefixes': ['codex/'], 'botUsernames': ['openai-codex']}
        assert get_search_query(detection) == 'head:codex/'

    def test_bot_username_fallback(self):
        assert get_search_query({'botUsernames': ['jules-google[bot]']}) == 'author:jules-google[bot]'

    def test_review_category_matches_commenter(self):
        detection = {'botUsernames': ['qodo-merge-pro[bot]', 'qodo-merge-pro-for-open-source[bot]']}
        assert get_search_query(detection, 'reviews') == 'commenter:qodo-merge-pro[bot]'

    def test_unsearchable_detection(self):
        assert get_search_query({'coAuthorEmails': ['noreply@anthropic.com']}) is None


class TestAgentFromDict:

    def test_explicit_query(self):
        agent = agent_from_dict({'id': 'x', 'name': 'X', 'color': '#fff', 'query': 'head:x/'})
        assert agent == AgentQuerySpec('x', 'X', '#fff', 'head:x/')

    def test_detection_block_with_commit_query(self):
        agent = agent_from_dict({
            'id': 'claude',
            'detection': {'botUsernames': ['claude[bot]'], 'commitQuery': '"Generated with Claude"'},
        })
        assert agent.query == 'author:claude[bot]'
        assert agent.commit_query == '"Generated with Claude"'
        assert agent.name == 'claude'

    def test_missing_id(self):
        with pytest.raises(ConfigurationError):
            agent_from_dict({'query': 'head:x/'})

    def test_missing_signature(self):
        with pytest.raises(ConfigurationError, match="no searchable"):
            agent_from_dict({'id': 'x', 'detection': {'coAuthorEmails': ['x@example.com']}})


class TestLoadRosterFromFile:

    def test_loads_both_categories_in_order(self, tmp_path):
        path = tmp_path / 'agents.json'
        path.write_text(json.dumps({
            'contributions': [
                {'id': 'b', 'query': 'head:b/'},
                {'id': 'a', 'query': 'head:a/'},
            ],
            'reviews': [{'id': 'r', 'detection': {'botUsernames': ['r[bot]']}}],
        }))
        roster = load_roster_from_file(str(path))

        assert [agent.id for agent in roster.contributions] == ['b', 'a']
        assert roster.reviews[0].query == 'commenter:r[bot]'

    def test_duplicate_ids_rejected(self, tmp_path):
        path = tmp_path / 'agents.json'
        path.write_text(json.dumps({
            'contributions': [{'id': 'a', 'query': 'head:a/'}, {'id': 'a', 'query': 'head:b/'}],
        }))
        with pytest.raises(ConfigurationError, match="Duplicate"):
            load_roster_from_file(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_roster_from_file(str(tmp_path / 'nope.json'))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'agents.json'
        path.write_text('{"contributions": [')
        with pytest.raises(ConfigurationError, match="not valid JSON"):
            load_roster_from_file(str(path))


class TestLoadRosterFromHF:

    @patch("roster.hf_hub_download")
    @patch("roster.HfApi")
    def test_splits_by_category(self, mock_api_cls, mock_download, tmp_path):
        files = {
            'b.json': {'id': 'rabbit', 'category': 'reviews', 'query': 'commenter:rabbit[bot]'},
            'a.json': {'id': 'copilot', 'query': 'head:copilot/'},
        }
        mock_api = MagicMock()
        mock_api.list_repo_files.return_value = ['README.md', 'b.json', 'a.json']
        mock_api_cls.return_value = mock_api

        def download(repo_id, filename, repo_type, token):
            path = tmp_path / filename
            path.write_text(json.dumps(files[filename]))
            return str(path)

        mock_download.side_effect = download
        roster = load_roster_from_hf('org/agents')

        assert [agent.id for agent in roster.contributions] == ['copilot']
        assert [agent.id for agent in roster.reviews] == ['rabbit']
        assert mock_download.call_count == 2
