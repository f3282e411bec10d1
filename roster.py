"""
Agent roster for the leaderboard.
Defines which agents are tracked and the search fragments that detect them.
"""

import json
import os
from dataclasses import dataclass
from typing import Optional

from huggingface_hub import HfApi, hf_hub_download


class ConfigurationError(Exception):
    """Raised when the roster or credentials are unusable at startup."""


@dataclass(frozen=True)
class AgentQuerySpec:
    """One tracked agent and the search fragment(s) that identify its activity."""

    id: str
    name: str
    color: str
    query: str
    commit_query: Optional[str] = None


# =============================================================================
# DEFAULT ROSTER
# =============================================================================

CONTRIBUTION_AGENTS = (
    AgentQuerySpec('copilot', 'GitHub Copilot', '#6e40c9', 'head:copilot/'),
    AgentQuerySpec('cursor', 'Cursor', '#00d4aa', 'head:cursor/'),
    AgentQuerySpec('codex', 'OpenAI Codex', '#10a37f', 'head:codex/'),
    AgentQuerySpec('devin', 'Devin', '#ff6b6b', 'author:devin-ai-integration[bot]'),
    AgentQuerySpec('claude', 'Claude Code', '#d97706', 'author:app/claude',
                   commit_query='"Co-Authored-By: Claude" noreply@anthropic.com'),
    AgentQuerySpec('jules', 'Jules', '#4285f4', 'author:jules-google[bot]'),
    AgentQuerySpec('codegen', 'Codegen', '#9333ea', 'author:codegen-sh[bot]'),
)

REVIEW_AGENTS = (
    AgentQuerySpec('coderabbit', 'CodeRabbit', '#f97316', 'commenter:coderabbitai[bot]'),
    AgentQuerySpec('ellipsis', 'Ellipsis', '#06b6d4', 'commenter:ellipsis-dev[bot]'),
    AgentQuerySpec('sourcery', 'Sourcery', '#ec4899', 'commenter:sourcery-ai[bot]'),
    AgentQuerySpec('greptile', 'Greptile', '#22c55e', 'commenter:greptileai[bot]'),
    AgentQuerySpec('qodo', 'Qodo', '#8b5cf6', 'commenter:qodo-merge-pro[bot]'),
    AgentQuerySpec('mesa', 'Mesa', '#0ea5e9', 'commenter:mesa-dev[bot]'),
    AgentQuerySpec('vercel', 'Vercel Agent', '#000000', 'commenter:vercel-agent[bot]'),
)


class Roster:
    """Immutable pair of agent lists, one per category."""

    def __init__(self, contributions, reviews):
        self.contributions = tuple(contributions)
        self.reviews = tuple(reviews)

    def __repr__(self):
        return f"Roster(contributions={len(self.contributions)}, reviews={len(self.reviews)})"


def default_roster():
    return Roster(CONTRIBUTION_AGENTS, REVIEW_AGENTS)


# =============================================================================
# DETECTION RULES
# =============================================================================

def get_search_query(detection, category='contributions'):
    """
    Derive a search fragment from detection rules.

    Branch prefixes are the most reliable signal and win; bot usernames are
    the fallback. Review agents are matched as commenters rather than authors.

    Returns None when nothing in the rules can be searched for.
    """
    branch_prefixes = detection.get('branchPrefixes') or []
    bot_usernames = detection.get('botUsernames') or []

    if category == 'reviews':
        if bot_usernames:
            return f"commenter:{bot_usernames[0]}"
        return None

    if branch_prefixes:
        return f"head:{branch_prefixes[0]}"
    if bot_usernames:
        return f"author:{bot_usernames[0]}"
    return None


def agent_from_dict(data, category='contributions'):
    """
    Build an AgentQuerySpec from a roster JSON object.

    Accepts either an explicit 'query' or a 'detection' block.
    Raises ConfigurationError when the entry is missing required fields.
    """
    if not isinstance(data, dict):
        raise ConfigurationError(f"Agent entry must be an object, got {type(data).__name__}")

    agent_id = data.get('id')
    if not agent_id:
        raise ConfigurationError(f"Agent entry without id: {data}")

    query = data.get('query')
    if not query and isinstance(data.get('detection'), dict):
        query = get_search_query(data['detection'], category)
    if not query:
        raise ConfigurationError(f"Agent '{agent_id}' has no searchable detection signature")

    commit_query = data.get('commit_query') or data.get('commitQuery')
    if not commit_query and isinstance(data.get('detection'), dict):
        commit_query = data['detection'].get('commitQuery')

    return AgentQuerySpec(
        id=agent_id,
        name=data.get('name', agent_id),
        color=data.get('color', '#7f7f7f'),
        query=query,
        commit_query=commit_query or None,
    )


def _build_roster(contributions, reviews):
    roster = Roster(
        [agent_from_dict(item, 'contributions') for item in contributions],
        [agent_from_dict(item, 'reviews') for item in reviews],
    )
    for agents in (roster.contributions, roster.reviews):
        ids = [agent.id for agent in agents]
        duplicates = sorted({agent_id for agent_id in ids if ids.count(agent_id) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate agent id(s) in roster: {', '.join(duplicates)}")
    return roster


def load_roster_from_file(path):
    """
    Load a roster from a JSON file shaped as
    {"contributions": [...], "reviews": [...]}.
    """
    if not os.path.exists(path):
        raise ConfigurationError(f"Roster file not found: {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Roster file {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Roster file {path} must contain a JSON object")

    roster = _build_roster(data.get('contributions', []), data.get('reviews', []))
    print(f"✓ Loaded roster from {path}: {len(roster.contributions)} contribution, "
          f"{len(roster.reviews)} review agent(s)")
    return roster


def load_roster_from_hf(repo_id, token=None):
    """
    Load a roster from a HuggingFace dataset of agent JSON files.

    Each file holds one agent object; its 'category' field ('contributions'
    or 'reviews', default 'contributions') picks the list it joins. Files are
    read in sorted path order so the roster order is deterministic.
    """
    api = HfApi()
    files = api.list_repo_files(repo_id=repo_id, repo_type="dataset", token=token)
    json_files = sorted(f for f in files if f.endswith('.json'))

    print(f"Found {len(json_files)} agent files in {repo_id}")

    contributions = []
    reviews = []
    for json_file in json_files:
        file_path = hf_hub_download(
            repo_id=repo_id,
            filename=json_file,
            repo_type="dataset",
            token=token
        )
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                agent_data = json.load(f)
        except json.JSONDecodeError as e:
            print(f"Warning: Could not load {json_file}: {e}")
            continue

        if agent_data.get('category') == 'reviews':
            reviews.append(agent_data)
        else:
            contributions.append(agent_data)

    roster = _build_roster(contributions, reviews)
    print(f"✓ Loaded {len(roster.contributions) + len(roster.reviews)} agents from HuggingFace")
    return roster
