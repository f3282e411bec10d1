"""
Agent Activity Mining Script
Counts pull requests, commits and reviews attributable to coding agents
through the GitHub search API and saves dated snapshots.
"""

import argparse
import math
import os
import sys
import time
from datetime import datetime, timezone, timedelta

import requests
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

from roster import ConfigurationError, default_roster, load_roster_from_file, load_roster_from_hf
from snapshot_store import HFSnapshotStore, LocalSnapshotStore, PersistenceError

# Load environment variables
load_dotenv()

# =============================================================================
# CONFIGURATION
# =============================================================================

GITHUB_API_URL = 'https://api.github.com'
REQUEST_TIMEOUT = 30

# GitHub Search API allows 30 requests/minute for authenticated users.
# A 3 second pause after every query keeps a single run well under that.
RATE_LIMIT_DELAY = 3
MAX_RETRIES = 3
DEFAULT_RETRY_WAIT = 60

RECENT_WINDOW_DAYS = 7

# Review trend needs a prior-period comparison that is not computed yet
TREND_UNAVAILABLE = 0

# =============================================================================
# ERRORS
# =============================================================================

class ThrottleSignal(Exception):
    """GitHub answered 403/429. retry_after is the server's wait hint in seconds, if any."""

    def __init__(self, retry_after=None, status=None):
        super().__init__(f"GitHub API throttled the request (HTTP {status})")
        self.retry_after = retry_after
        self.status = status


class QueryError(Exception):
    """A single search query failed for good."""

    def __init__(self, message, cause=None):
        super().__init__(message)
        self.cause = cause


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def get_github_token():
    """Get the GitHub token from the environment. Missing token is fatal at startup."""
    token = os.getenv('GITHUB_TOKEN')
    if not token:
        raise ConfigurationError("GITHUB_TOKEN is not set")
    return token


def get_hf_token():
    """Get HuggingFace token from environment variables."""
    token = os.getenv('HF_TOKEN')
    if not token:
        print("Warning: HF_TOKEN not found in environment variables")
    return token


def format_timestamp(dt):
    """ISO 8601 instant with Z suffix (e.g. 2025-10-15T23:23:47Z)."""
    return dt.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def utc_now():
    return datetime.now(timezone.utc)


# =============================================================================
# GITHUB SEARCH
# =============================================================================

def parse_retry_after(headers, now=None):
    """
    Extract a wait hint (seconds) from a throttled response.

    Prefers Retry-After; falls back to X-RateLimit-Reset when the primary
    budget is exhausted. Returns None when the server gave no usable hint.
    """
    retry_after = headers.get('Retry-After')
    if retry_after:
        try:
            wait = float(retry_after)
        except ValueError:
            wait = None
        # nan/inf would make time.sleep raise
        if wait is not None and math.isfinite(wait):
            return max(wait, 0.0)

    if headers.get('X-RateLimit-Remaining') == '0':
        reset_hdr = headers.get('X-RateLimit-Reset')
        if reset_hdr:
            try:
                reset_timestamp = int(float(reset_hdr))
            except (ValueError, OverflowError):
                return None
            current = time.time() if now is None else now
            return max(reset_timestamp - current + 1, 1)

    return None


def search_count(query, token, kind='issues'):
    """
    Run one GitHub search and return its total_count.

    kind is 'issues' (pull requests and issues) or 'commits'.
    Raises ThrottleSignal on 403/429 and QueryError on any other HTTP error.
    """
    url = f'{GITHUB_API_URL}/search/{kind}'
    headers = {
        'Accept': 'application/vnd.github+json',
        'Authorization': f'token {token}',
    }
    params = {'q': query, 'per_page': 1}

    resp = requests.get(url, headers=headers, params=params, timeout=REQUEST_TIMEOUT)

    if resp.status_code in (403, 429):
        raise ThrottleSignal(parse_retry_after(resp.headers), resp.status_code)
    if not 200 <= resp.status_code < 300:
        error = requests.HTTPError(f"HTTP {resp.status_code} from {url}", response=resp)
        raise QueryError(
            f"GitHub search returned HTTP {resp.status_code} for '{query}'",
            cause=error
        ) from error

    return int(resp.json().get('total_count', 0))


def make_search(token):
    """Bind a token to search_count; the collectors only see search(query, kind)."""
    def search(query, kind='issues'):
        return search_count(query, token, kind)
    return search


def execute(query_fn, max_retries=MAX_RETRIES, sleep=time.sleep):
    """
    Call query_fn, waiting and retrying while GitHub throttles.

    At most max_retries retries follow the first attempt. Each wait uses the
    server's hint, or DEFAULT_RETRY_WAIT seconds without one. Exhausted
    retries and every other failure raise QueryError with the cause attached.
    """
    last_signal = None
    for attempt in range(max_retries + 1):
        try:
            return query_fn()
        except ThrottleSignal as signal:
            last_signal = signal
            if attempt == max_retries:
                break
            wait = signal.retry_after if signal.retry_after is not None else DEFAULT_RETRY_WAIT
            print(f"    Rate limited. Waiting {wait:g}s before retry ({attempt + 1}/{max_retries})...")
            sleep(wait)
        except QueryError:
            raise
        except Exception as e:
            raise QueryError(f"Query failed: {e}", cause=e) from e

    raise QueryError(
        f"Still rate limited after {max_retries} retries",
        cause=last_signal
    ) from last_signal


# =============================================================================
# AGENT METRIC COLLECTION
# =============================================================================

def compute_success_rate(merged_prs, ready_prs):
    """Merged share of ready PRs in percent, two decimals. 0 when nothing is ready."""
    if ready_prs <= 0:
        return 0
    return round(merged_prs / ready_prs * 100, 2)


def zero_contribution_stats():
    return {
        'totalPRs': 0,
        'readyPRs': 0,
        'mergedPRs': 0,
        'successRate': 0,
        'totalCommits': 0,
    }


def zero_review_stats():
    return {
        'totalReviews': 0,
        'last7Days': 0,
        'trend': TREND_UNAVAILABLE,
    }


class AgentResult:
    """
    Outcome of collecting one agent.

    status is COLLECTED when every query succeeded, FALLBACK when a query
    failed and zero stats were substituted. error keeps the QueryError.
    """

    COLLECTED = 'collected'
    FALLBACK = 'fallback'

    def __init__(self, agent, stats, error=None):
        self.agent = agent
        self.stats = stats
        self.error = error

    @property
    def status(self):
        return self.FALLBACK if self.error is not None else self.COLLECTED

    def to_document(self):
        return {
            'id': self.agent.id,
            'name': self.agent.name,
            'color': self.agent.color,
            'stats': dict(self.stats),
        }

    def __repr__(self):
        return f"AgentResult({self.agent.id!r}, {self.status})"


def _count(search, query, kind, sleep, delay):
    count = execute(lambda: search(query, kind), sleep=sleep)
    sleep(delay)
    return count


def collect_contributions(agents, search, sleep=time.sleep, delay=RATE_LIMIT_DELAY):
    """
    Count total, merged and ready PRs (and commits, when the agent has a
    commit signature) for each agent, in roster order.

    A failed query degrades that agent to zero stats; the rest continue.
    """
    print('Collecting contribution data...')
    results = []

    for agent in agents:
        print(f"  Querying {agent.name}...")
        try:
            total_prs = _count(search, f"is:pr {agent.query}", 'issues', sleep, delay)
            merged_prs = _count(search, f"is:pr is:merged {agent.query}", 'issues', sleep, delay)
            ready_prs = _count(search, f"is:pr -is:draft {agent.query}", 'issues', sleep, delay)
            total_commits = 0
            if agent.commit_query:
                total_commits = _count(search, agent.commit_query, 'commits', sleep, delay)
        except QueryError as e:
            print(f"    ✗ Error querying {agent.name}: {e}")
            results.append(AgentResult(agent, zero_contribution_stats(), error=e))
            continue

        stats = {
            'totalPRs': total_prs,
            'readyPRs': ready_prs,
            'mergedPRs': merged_prs,
            'successRate': compute_success_rate(merged_prs, ready_prs),
            'totalCommits': total_commits,
        }
        results.append(AgentResult(agent, stats))
        print(f"    Total: {total_prs}, Merged: {merged_prs}, Rate: {stats['successRate']}%")

    return results


def collect_reviews(agents, search, today=None, sleep=time.sleep, delay=RATE_LIMIT_DELAY):
    """
    Count PRs each review agent commented on, overall and since the cutoff
    (today minus RECENT_WINDOW_DAYS, inclusive). The cutoff is fixed once
    for the whole run.
    """
    print('Collecting review data...')
    if today is None:
        today = utc_now().date()
    cutoff = (today - timedelta(days=RECENT_WINDOW_DAYS)).isoformat()
    results = []

    for agent in agents:
        print(f"  Querying {agent.name}...")
        try:
            total_reviews = _count(search, f"is:pr {agent.query}", 'issues', sleep, delay)
            recent_reviews = _count(search, f"is:pr {agent.query} created:>={cutoff}", 'issues', sleep, delay)
        except QueryError as e:
            print(f"    ✗ Error querying {agent.name}: {e}")
            results.append(AgentResult(agent, zero_review_stats(), error=e))
            continue

        stats = {
            'totalReviews': total_reviews,
            'last7Days': recent_reviews,
            'trend': TREND_UNAVAILABLE,
        }
        results.append(AgentResult(agent, stats))
        print(f"    Total: {total_reviews}, Last {RECENT_WINDOW_DAYS} days: {recent_reviews}")

    return results


# =============================================================================
# SNAPSHOT ASSEMBLY
# =============================================================================

def build_collection_document(results, completed_at):
    return {
        'lastUpdated': format_timestamp(completed_at),
        'agents': [result.to_document() for result in results],
    }


def build_history_entry(contribution_results, review_results, date):
    """
    One calendar day's point in time. Every agent of the run is present,
    with zeros for agents that fell back. 'commits' is only recorded for
    agents that track commits.
    """
    contributions = {}
    for result in contribution_results:
        point = {
            'prs': result.stats['totalPRs'],
            'merged': result.stats['mergedPRs'],
        }
        if result.agent.commit_query:
            point['commits'] = result.stats['totalCommits']
        contributions[result.agent.id] = point

    reviews = {
        result.agent.id: {'count': result.stats['totalReviews']}
        for result in review_results
    }

    return {
        'date': date,
        'contributions': contributions,
        'reviews': reviews,
    }


# =============================================================================
# MAIN MINING FUNCTION
# =============================================================================

def run_collection(roster, search, store, sleep=time.sleep, clock=utc_now):
    """
    One full collection run: every agent, every metric, then persistence.

    Nothing is written until all queries are done, so an interrupted run
    leaves the previous snapshot and history untouched. PersistenceError
    propagates to the caller.
    """
    started = clock()
    run_start_time = time.time()

    print(f"\n{'='*80}")
    print(f"Starting collection for {len(roster.contributions)} contribution and "
          f"{len(roster.reviews)} review agent(s)")
    print(f"{'='*80}\n")

    contribution_results = collect_contributions(roster.contributions, search, sleep=sleep)
    review_results = collect_reviews(roster.reviews, search, today=started.date(), sleep=sleep)

    completed_at = clock()
    contributions_doc = build_collection_document(contribution_results, completed_at)
    reviews_doc = build_collection_document(review_results, completed_at)
    entry = build_history_entry(
        contribution_results,
        review_results,
        completed_at.astimezone(timezone.utc).strftime('%Y-%m-%d')
    )

    print(f"\n💾 Saving snapshot to {store!r}...")
    store.write_current(contributions_doc, reviews_doc)
    store.append_history(entry)

    fallback_agents = [result.agent.id
                       for result in contribution_results + review_results
                       if result.status == AgentResult.FALLBACK]
    if fallback_agents:
        print(f"⚠️ {len(fallback_agents)} agent(s) fell back to zero stats: {', '.join(fallback_agents)}")

    print(f"\n✅ Data collection complete ({time.time() - run_start_time:.1f}s)")

    return {
        'lastUpdated': contributions_doc['lastUpdated'],
        'date': entry['date'],
        'contributions': contributions_doc,
        'reviews': reviews_doc,
        'history': entry,
        'fallback_agents': fallback_agents,
    }


# =============================================================================
# SCHEDULING
# =============================================================================

def start_scheduler(job, hour=0, minute=0):
    """Run job every day at hour:minute UTC. Blocks until interrupted."""
    scheduler = BlockingScheduler(timezone="UTC")
    scheduler.add_job(
        job,
        trigger=CronTrigger(hour=hour, minute=minute),
        id='daily_collection',
        name='Daily Agent Activity Collection',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )
    print(f"✓ Scheduler started: daily collection at {hour:02d}:{minute:02d} UTC")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        print("Scheduler stopped")


# =============================================================================
# ENTRY POINT
# =============================================================================

def build_parser():
    parser = argparse.ArgumentParser(description='Collect coding-agent activity from GitHub search')
    parser.add_argument('--data-dir', default='data',
                        help='Local directory for snapshots (default: data)')
    parser.add_argument('--hf-repo',
                        help='Store snapshots in this HuggingFace dataset instead of --data-dir')
    roster_group = parser.add_mutually_exclusive_group()
    roster_group.add_argument('--agents',
                              help='JSON roster file ({"contributions": [...], "reviews": [...]})')
    roster_group.add_argument('--agents-repo',
                              help='HuggingFace dataset holding one JSON file per agent')
    parser.add_argument('--schedule', action='store_true',
                        help='Stay running and collect daily at 00:00 UTC')
    return parser


def load_roster(args):
    if args.agents:
        return load_roster_from_file(args.agents)
    if args.agents_repo:
        return load_roster_from_hf(args.agents_repo, token=os.getenv('HF_TOKEN'))
    return default_roster()


def create_store(args):
    if args.hf_repo:
        return HFSnapshotStore(args.hf_repo, token=get_hf_token())
    return LocalSnapshotStore(args.data_dir)


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        token = get_github_token()
        roster = load_roster(args)
    except ConfigurationError as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        return 2

    store = create_store(args)
    search = make_search(token)

    if args.schedule:
        def scheduled_run():
            try:
                run_collection(roster, search, store)
            except PersistenceError as e:
                print(f"✗ Scheduled collection failed to persist: {e}", file=sys.stderr)

        start_scheduler(scheduled_run)
        return 0

    try:
        run_collection(roster, search, store)
    except PersistenceError as e:
        print(f"✗ Failed to persist snapshot: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
