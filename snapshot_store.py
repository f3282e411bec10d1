"""
Snapshot storage for collected agent statistics.

Layout (identical for every backend):
    contributions.json        latest contribution snapshot
    reviews.json              latest review snapshot
    history/YYYY-MM-DD.json   one entry per UTC calendar day

The store owns the write path. Readers only go through load_history()
and read_current().
"""

import json
import os
import random
import shutil
import tempfile
import time
from datetime import datetime

from huggingface_hub import HfApi, hf_hub_download
from huggingface_hub.errors import EntryNotFoundError, RepositoryNotFoundError

CONTRIBUTIONS_FILE = 'contributions.json'
REVIEWS_FILE = 'reviews.json'
HISTORY_DIR = 'history'

CURRENT_FILES = {
    'contributions': CONTRIBUTIONS_FILE,
    'reviews': REVIEWS_FILE,
}


class PersistenceError(Exception):
    """A durable write failed. Fatal to the collection run."""


def is_valid_date(value):
    """Return True for a YYYY-MM-DD calendar date string."""
    if not isinstance(value, str) or len(value) != 10:
        return False
    try:
        datetime.strptime(value, '%Y-%m-%d')
    except ValueError:
        return False
    return True


def history_path(date):
    return f"{HISTORY_DIR}/{date}.json"


def dump_json(data):
    return json.dumps(data, indent=2) + '\n'


# =============================================================================
# LOCAL DIRECTORY BACKEND
# =============================================================================

class LocalSnapshotStore:
    """Stores snapshots as JSON files under a local data directory."""

    def __init__(self, data_dir):
        self.data_dir = data_dir

    def __repr__(self):
        return f"LocalSnapshotStore({self.data_dir!r})"

    def _path(self, relative_path):
        return os.path.join(self.data_dir, *relative_path.split('/'))

    def _stage(self, relative_path, content):
        """Write content to a temp file next to its target and return the temp path."""
        target = self._path(relative_path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            prefix='.' + os.path.basename(target) + '.',
            suffix='.tmp',
            dir=os.path.dirname(target)
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(content)
        except BaseException:
            os.unlink(temp_path)
            raise
        return temp_path

    def _write_files(self, files):
        """
        Write {relative_path: content} as a unit.

        Every file is staged first; targets are only replaced once all temp
        files exist, so a failed staging step leaves prior content untouched.
        """
        staged = []
        try:
            for relative_path, content in files.items():
                staged.append((self._stage(relative_path, content), self._path(relative_path)))
            for temp_path, target in staged:
                os.replace(temp_path, target)
        except OSError as e:
            for temp_path, _ in staged:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
            raise PersistenceError(f"Could not write {', '.join(files)} to {self.data_dir}: {e}") from e

    def write_current(self, contributions, reviews):
        self._write_files({
            CONTRIBUTIONS_FILE: dump_json(contributions),
            REVIEWS_FILE: dump_json(reviews),
        })
        print(f"✓ Saved {CONTRIBUTIONS_FILE} and {REVIEWS_FILE} to {self.data_dir}")

    def append_history(self, entry):
        date = _require_date(entry)
        self._write_files({history_path(date): dump_json(entry)})
        print(f"✓ Saved history snapshot {history_path(date)}")

    def read_current(self, category):
        path = self._path(CURRENT_FILES[category])
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def list_history(self):
        history_dir = self._path(HISTORY_DIR)
        if not os.path.isdir(history_dir):
            return []
        return [history_path(name[:-len('.json')])
                for name in sorted(os.listdir(history_dir))
                if name.endswith('.json')]

    def read_text(self, relative_path):
        with open(self._path(relative_path), 'r', encoding='utf-8') as f:
            return f.read()


# =============================================================================
# HUGGINGFACE DATASET BACKEND
# =============================================================================

class HFSnapshotStore:
    """
    Stores snapshots in a HuggingFace dataset repository.

    Current snapshots are uploaded in a single commit so the two documents
    never diverge on the hub.
    """

    def __init__(self, repo_id, token=None, api=None, max_retries=3, sleep=time.sleep):
        self.repo_id = repo_id
        self.token = token
        self.api = api or HfApi()
        self.max_retries = max_retries
        self.sleep = sleep

    def __repr__(self):
        return f"HFSnapshotStore({self.repo_id!r})"

    def _upload_with_retry(self, folder_path, commit_message):
        """Upload a folder, backing off exponentially with jitter between failed attempts."""
        delay = 2.0
        for attempt in range(self.max_retries):
            try:
                self.api.upload_folder(
                    folder_path=folder_path,
                    repo_id=self.repo_id,
                    repo_type="dataset",
                    token=self.token,
                    commit_message=commit_message
                )
                if attempt > 0:
                    print(f"   ✓ Upload succeeded on attempt {attempt + 1}/{self.max_retries}")
                return
            except Exception as e:
                if attempt == self.max_retries - 1:
                    raise
                wait_time = delay + random.uniform(0, 1.0)
                print(f"   ⚠️ Upload failed (attempt {attempt + 1}/{self.max_retries}): {e}")
                print(f"   ⏳ Retrying in {wait_time:.1f} seconds...")
                self.sleep(wait_time)
                delay = min(delay * 2, 60.0)

    def _upload_files(self, files, commit_message):
        temp_dir = tempfile.mkdtemp(prefix="hf_snapshot_")
        try:
            for relative_path, content in files.items():
                local_path = os.path.join(temp_dir, *relative_path.split('/'))
                os.makedirs(os.path.dirname(local_path), exist_ok=True)
                with open(local_path, 'w', encoding='utf-8') as f:
                    f.write(content)

            print(f"📤 Uploading {len(files)} file(s) to {self.repo_id} in a single commit...")
            self._upload_with_retry(temp_dir, commit_message)
        except Exception as e:
            raise PersistenceError(f"Upload to {self.repo_id} failed: {e}") from e
        finally:
            if os.path.exists(temp_dir):
                shutil.rmtree(temp_dir)

    def write_current(self, contributions, reviews):
        self._upload_files(
            {
                CONTRIBUTIONS_FILE: dump_json(contributions),
                REVIEWS_FILE: dump_json(reviews),
            },
            commit_message=f"Update current snapshot ({contributions.get('lastUpdated', 'unknown')})"
        )
        print("   ✅ Current snapshot uploaded")

    def append_history(self, entry):
        date = _require_date(entry)
        self._upload_files(
            {history_path(date): dump_json(entry)},
            commit_message=f"History snapshot {date}"
        )
        print(f"   ✅ History snapshot {date} uploaded")

    def read_current(self, category):
        try:
            return json.loads(self.read_text(CURRENT_FILES[category]))
        except (EntryNotFoundError, RepositoryNotFoundError):
            return None

    def list_history(self):
        try:
            files = self.api.list_repo_files(repo_id=self.repo_id, repo_type="dataset", token=self.token)
        except RepositoryNotFoundError:
            return []
        prefix = f"{HISTORY_DIR}/"
        return sorted(f for f in files
                      if f.startswith(prefix) and f.endswith('.json') and '/' not in f[len(prefix):])

    def read_text(self, relative_path):
        file_path = hf_hub_download(
            repo_id=self.repo_id,
            filename=relative_path,
            repo_type="dataset",
            token=self.token
        )
        with open(file_path, 'r', encoding='utf-8') as f:
            return f.read()


def _require_date(entry):
    date = entry.get('date') if isinstance(entry, dict) else None
    if not is_valid_date(date):
        raise PersistenceError(f"History entry has no valid date: {date!r}")
    return date


# =============================================================================
# HISTORY AGGREGATION
# =============================================================================

def load_history(store):
    """
    Load every stored history entry, oldest first.

    Records that cannot be read, are not JSON objects, lack a valid 'date',
    carry a date other than their file name, or hold non-object
    contributions/reviews are skipped with a warning. A store without
    history yields [].
    """
    entries = []
    for path in store.list_history():
        try:
            data = json.loads(store.read_text(path))
        except (OSError, ValueError, EntryNotFoundError) as e:
            print(f"Warning: Skipping unreadable history record {path}: {e}")
            continue

        if not isinstance(data, dict) or not is_valid_date(data.get('date')):
            print(f"Warning: Skipping history record {path} without a valid date")
            continue

        # One record per day: the file name is the day's key
        if path != history_path(data['date']):
            print(f"Warning: Skipping history record {path} dated {data['date']}")
            continue

        malformed = [section for section in ('contributions', 'reviews')
                     if section in data and not isinstance(data[section], dict)]
        if malformed:
            print(f"Warning: Skipping history record {path} with malformed {', '.join(malformed)}")
            continue

        data.setdefault('contributions', {})
        data.setdefault('reviews', {})
        entries.append(data)

    entries.sort(key=lambda entry: entry['date'])
    return entries
