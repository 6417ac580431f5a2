import threading

from timesheet_backend.ownership import OwnershipRegistry

A = "aaaaaaaa-0000-4000-8000-000000000001"
B = "bbbbbbbb-0000-4000-8000-000000000002"


def test_track_and_verify():
    registry = OwnershipRegistry()
    registry.track(A, "one.xlsx")
    assert registry.verify(A, "one.xlsx")
    assert not registry.verify(B, "one.xlsx")
    assert not registry.verify(None, "one.xlsx")
    assert not registry.verify(A, "unknown.xlsx")
    assert registry.files_for(A) == {"one.xlsx"}


def test_empty_arguments_ignored():
    registry = OwnershipRegistry()
    registry.track("", "one.xlsx")
    registry.track(A, None)
    assert len(registry) == 0
    assert registry.sessions() == frozenset()


def test_last_writer_wins():
    registry = OwnershipRegistry()
    registry.track(A, "shared.xlsx")
    registry.track(A, "mine.xlsx")
    registry.track(B, "shared.xlsx")

    assert registry.owner_of("shared.xlsx") == B
    assert not registry.verify(A, "shared.xlsx")
    assert registry.files_for(A) == {"mine.xlsx"}
    assert registry.files_for(B) == {"shared.xlsx"}


def test_forget_drops_both_directions():
    registry = OwnershipRegistry()
    registry.track(A, "one.xlsx")
    registry.track(A, "two.pdf")
    registry.track(B, "three.xlsx")

    assert registry.forget(A) == {"one.xlsx", "two.pdf"}
    assert registry.owner_of("one.xlsx") is None
    assert registry.files_for(A) == frozenset()
    assert registry.sessions() == {B}
    assert registry.forget(A) == set()
    assert registry.forget(None) == set()


def test_remove_file():
    registry = OwnershipRegistry()
    registry.track(A, "one.xlsx")
    registry.remove_file("one.xlsx")
    registry.remove_file("one.xlsx")
    assert len(registry) == 0
    assert A not in registry.sessions()


def test_indices_stay_consistent_under_concurrency():
    registry = OwnershipRegistry()
    sessions = [f"{i:08x}-0000-4000-8000-000000000000" for i in range(8)]
    files = [f"file-{i}.xlsx" for i in range(50)]
    start = threading.Barrier(len(sessions))

    def worker(index):
        sid = sessions[index]
        start.wait()
        for round_ in range(200):
            filename = files[(index * 7 + round_) % len(files)]
            registry.track(sid, filename)
            if round_ % 17 == 0:
                registry.remove_file(filename)
            if round_ % 53 == 0:
                registry.forget(sid)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(len(sessions))]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    total = 0
    for sid in registry.sessions():
        owned = registry.files_for(sid)
        assert owned
        total += len(owned)
        for filename in owned:
            assert registry.owner_of(filename) == sid
    assert total == len(registry)
