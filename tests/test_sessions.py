import uuid

from timesheet_backend.sessions import SessionTracker
from timesheet_backend.storage import PDF_SUFFIX, derived_name


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_resolve_issues_and_keeps_sessions(storage):
    tracker = SessionTracker(storage, ttl_minutes=30)
    sid, is_new = tracker.resolve(None)
    assert is_new
    assert uuid.UUID(sid).version == 4

    same, is_new = tracker.resolve(sid)
    assert same == sid
    assert not is_new

    for bad in ["", "not-a-uuid", "../../etc/passwd"]:
        fresh, is_new = tracker.resolve(bad)
        assert is_new
        assert fresh != sid


def test_end_deletes_owned_files_only(storage, make_xlsx):
    tracker = SessionTracker(storage)
    mine, _ = tracker.resolve(None)
    theirs, _ = tracker.resolve(None)
    stored = storage.store(make_xlsx(), "a.xlsx", mine)
    pdf = derived_name(stored, PDF_SUFFIX)
    storage.load(pdf).write_bytes(b"%PDF-1.4")
    storage.track_generated_file(stored, pdf, mine)
    kept = storage.store(make_xlsx(), "b.xlsx", theirs)

    assert tracker.end(mine) == 2

    assert storage.load_all() == [kept]
    assert storage.ownership.files_for(mine) == frozenset()
    assert tracker.last_seen(mine) is None
    assert storage.verify_ownership(theirs, kept)


def test_expire_idle(storage, make_xlsx):
    clock = FakeClock()
    tracker = SessionTracker(storage, ttl_minutes=1, clock=clock)
    idle, _ = tracker.resolve(None)
    storage.store(make_xlsx(), "a.xlsx", idle)
    clock.now += 45
    active, _ = tracker.resolve(None)

    clock.now += 30
    assert tracker.expire_idle() == 1
    assert tracker.last_seen(idle) is None
    assert tracker.last_seen(active) == 1_045.0
    assert storage.load_all() == []


def test_zero_ttl_disables_expiry(storage):
    clock = FakeClock()
    tracker = SessionTracker(storage, ttl_minutes=0, clock=clock)
    tracker.resolve(None)
    clock.now += 10_000
    assert tracker.expire_idle() == 0
