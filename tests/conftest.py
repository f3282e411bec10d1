"""Shared pytest fixtures: a scripted search backend, a recording sleep and a small roster."""

from datetime import datetime, timezone

import pytest

from roster import AgentQuerySpec, Roster


class FakeSearch:
    """
    Stands in for search(query, kind).

    counts maps full query strings to total counts; anything else returns
    default. Queries containing one of the failing markers raise.
    """

    def __init__(self, counts=None, default=0, failing=()):
        self.counts = dict(counts or {})
        self.default = default
        self.failing = tuple(failing)
        self.calls = []

    def __call__(self, query, kind='issues'):
        self.calls.append((query, kind))
        for marker in self.failing:
            if marker in query:
                raise RuntimeError(f"backend error for {query}")
        return self.counts.get(query, self.default)


class RecordingSleep:
    def __init__(self):
        self.durations = []

    def __call__(self, seconds):
        self.durations.append(seconds)


class FixedClock:
    def __init__(self, *instants):
        self.instants = list(instants)

    def __call__(self):
        if len(self.instants) > 1:
            return self.instants.pop(0)
        return self.instants[0]


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def small_roster():
    return Roster(
        [
            AgentQuerySpec('alpha', 'Alpha Bot', '#111111', 'head:alpha/'),
            AgentQuerySpec('beta', 'Beta Bot', '#222222', 'author:beta[bot]',
                           commit_query='author-email:beta@example.com'),
        ],
        [
            AgentQuerySpec('rabbit', 'Rabbit', '#333333', 'commenter:rabbit[bot]'),
        ],
    )


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 3, 2, 12, 0, 0, tzinfo=timezone.utc))
