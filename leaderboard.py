"""
Leaderboard read side.
Ranks the current snapshot and turns stored history into trend series and charts.
Everything here only reads what the collector persisted.
"""

from datetime import datetime, timezone, timedelta

import pandas as pd
import plotly.graph_objects as go

from snapshot_store import load_history

CONTRIBUTION_METRICS = ['totalWork', 'totalPRs', 'readyPRs', 'mergedPRs', 'successRate', 'totalCommits']
REVIEW_METRICS = ['totalReviews', 'last7Days']

DEFAULT_METRIC = {
    'contributions': 'totalWork',
    'reviews': 'totalReviews',
}

TIME_RANGES = {
    '7d': 7,
    '30d': 30,
    '90d': 90,
    '365d': 365,
    'all': None,
}

# History field per category for each chartable series
HISTORY_FIELDS = {
    'contributions': ['prs', 'merged', 'commits'],
    'reviews': ['count'],
}


# =============================================================================
# FORMATTING
# =============================================================================

def format_percentage(value, decimals=2):
    """Format a percentage value, e.g. 90 -> '90.00%'."""
    return f"{float(value or 0):.{decimals}f}%"


def format_compact(num):
    """Compact count for chart axes and badges: 1234567 -> '1.2M', 45200 -> '45K'."""
    if num >= 1_000_000:
        return f"{num / 1_000_000:.1f}M"
    if num >= 1_000:
        return f"{num / 1_000:.0f}K"
    return f"{num:,}"


# =============================================================================
# RANKING
# =============================================================================

def leaderboard_dataframe(document, category='contributions', metric=None, ascending=False):
    """
    Rank the agents of a current snapshot document by one metric.

    Ties keep the document's insertion order (stable sort). Returns a
    DataFrame with a 1-based 'rank' column followed by id, name, color and
    every stats field.
    """
    metric = metric or DEFAULT_METRIC[category]
    allowed = CONTRIBUTION_METRICS if category == 'contributions' else REVIEW_METRICS
    if metric not in allowed:
        raise ValueError(f"Unknown {category} metric '{metric}'. Expected one of: {', '.join(allowed)}")

    agents = (document or {}).get('agents', [])
    rows = []
    for agent in agents:
        row = {
            'id': agent.get('id'),
            'name': agent.get('name', agent.get('id')),
            'color': agent.get('color'),
        }
        row.update(agent.get('stats', {}))
        rows.append(row)

    df = pd.DataFrame(rows)
    if df.empty:
        return pd.DataFrame(columns=['rank', 'id', 'name', 'color', metric])

    if category == 'contributions':
        for column in ('totalPRs', 'totalCommits'):
            if column not in df.columns:
                df[column] = 0
        df['totalWork'] = pd.to_numeric(df['totalPRs'], errors='coerce').fillna(0) + \
            pd.to_numeric(df['totalCommits'], errors='coerce').fillna(0)

    if metric not in df.columns:
        df[metric] = 0
    df[metric] = pd.to_numeric(df[metric], errors='coerce').fillna(0)

    # mergesort is the stable kind, so equal values keep document order
    df = df.sort_values(by=metric, ascending=ascending, kind='mergesort').reset_index(drop=True)
    df.insert(0, 'rank', range(1, len(df) + 1))
    return df


def get_leaderboard(store, category='contributions', metric=None, ascending=False):
    """Load the current snapshot for a category from the store and rank it."""
    return leaderboard_dataframe(store.read_current(category), category, metric, ascending)


# =============================================================================
# HISTORY SERIES
# =============================================================================

def filter_history(history, time_range='30d', today=None):
    """Keep entries on or after today minus the range. 'all' keeps everything."""
    if time_range not in TIME_RANGES:
        raise ValueError(f"Unknown time range '{time_range}'. Expected one of: {', '.join(TIME_RANGES)}")

    days = TIME_RANGES[time_range]
    if days is None:
        return list(history)

    if today is None:
        today = datetime.now(timezone.utc).date()
    cutoff = (today - timedelta(days=days)).isoformat()
    return [entry for entry in history if entry['date'] >= cutoff]


def extract_series(history, agent_id, category='contributions', field=None):
    """
    Per-agent time series over history.

    Returns (dates, values). A date where the agent has no record yields
    None, meaning "no data" rather than zero.
    """
    field = field or HISTORY_FIELDS[category][0]
    dates = []
    values = []
    for entry in history:
        dates.append(entry['date'])
        point = entry.get(category, {}).get(agent_id)
        values.append(point.get(field) if isinstance(point, dict) else None)
    return dates, values


def load_history_series(store, agents, category='contributions', field=None, time_range='all', today=None):
    """Load history from the store and extract one series per agent: {agent_id: (dates, values)}."""
    history = filter_history(load_history(store), time_range, today)
    return {agent['id']: extract_series(history, agent['id'], category, field) for agent in agents}


# =============================================================================
# CHARTS
# =============================================================================

def create_trend_plot(history, agents, category='contributions', field=None, log_scale=False):
    """
    Line chart of one history field per agent over time.

    agents are the current snapshot agent dicts (id, name, color). Dates
    without data for an agent are left out of that agent's line.
    """
    field = field or HISTORY_FIELDS[category][0]

    if not history or not agents:
        fig = go.Figure()
        fig.add_annotation(
            text="No history data available yet",
            xref="paper", yref="paper",
            x=0.5, y=0.5, showarrow=False,
            font=dict(size=16)
        )
        fig.update_layout(title=None, xaxis_title=None, height=500)
        return fig

    fig = go.Figure()
    for agent in agents:
        dates, values = extract_series(history, agent['id'], category, field)
        x_points = [date for date, value in zip(dates, values) if value is not None]
        y_points = [value for value in values if value is not None]
        if not x_points:
            continue

        fig.add_trace(
            go.Scatter(
                x=x_points,
                y=y_points,
                name=agent.get('name', agent['id']),
                mode='lines+markers',
                line=dict(color=agent.get('color'), width=2),
                marker=dict(size=6),
                hovertemplate='<b>%{fullData.name}</b><br>' +
                             'Date: %{x}<br>' +
                             f'{field}: ' + '%{y:,}<br>' +
                             '<extra></extra>'
            )
        )

    fig.update_yaxes(type='log' if log_scale else 'linear')
    fig.update_layout(
        title=None,
        hovermode='x unified',
        height=500,
        legend=dict(
            orientation="h",
            yanchor="bottom",
            y=1.02,
            xanchor="right",
            x=1
        ),
        margin=dict(l=50, r=50, t=100, b=50)
    )
    return fig
