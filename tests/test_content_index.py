import threading

from content_index import ExistingContentIndex
from models import IndexEntry
from tests.conftest import FakeHeartcoreClient, PARENT_KEY


class TestExistingContentIndex:
    """Test the concurrent show id index"""

    def test_lookup_missing_returns_none(self):
        index = ExistingContentIndex()

        assert index.lookup("1") is None
        assert "1" not in index
        assert len(index) == 0

    def test_keys_are_case_insensitive_strings(self):
        """Ids are compared as trimmed, case-folded strings"""
        index = ExistingContentIndex({"ABC": IndexEntry("k1", "Name")})

        assert index.lookup("abc") == IndexEntry("k1", "Name")
        assert index.lookup(" Abc ") is not None

    def test_int_and_string_ids_match(self):
        index = ExistingContentIndex()
        index.insert(42, "k42", "Answer")

        assert "42" in index
        assert index.lookup(42).key == "k42"

    def test_insert_overwrites(self):
        """Duplicate insert is last writer wins"""
        index = ExistingContentIndex()
        index.insert("1", "first", "A")
        index.insert("1", "second", "B")

        assert index.lookup("1") == IndexEntry("second", "B")
        assert len(index) == 1

    def test_try_add_keeps_first(self):
        index = ExistingContentIndex()

        assert index.try_add("1", "first", "A") is True
        assert index.try_add("1", "second", "B") is False
        assert index.lookup("1").key == "first"

    def test_from_remote_uses_one_listing(self):
        client = FakeHeartcoreClient(existing={"7": IndexEntry("k7", "Seven")})

        index = ExistingContentIndex.from_remote(client, PARENT_KEY)

        assert index.keys() == ["7"]
        assert index.entries() == {"7": IndexEntry("k7", "Seven")}

    def test_concurrent_try_add_admits_one_winner(self):
        """Many threads racing on one id produce exactly one entry"""
        index = ExistingContentIndex()
        winners = []
        lock = threading.Lock()
        barrier = threading.Barrier(16)

        def worker(n):
            barrier.wait()
            if index.try_add("99", f"key-{n}", "Race"):
                with lock:
                    winners.append(n)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(winners) == 1
        assert index.lookup("99").key == f"key-{winners[0]}"

    def test_concurrent_inserts_of_distinct_ids(self):
        index = ExistingContentIndex()

        def worker(start):
            for n in range(start, start + 100):
                index.insert(n, f"k{n}", f"Show {n}")

        threads = [threading.Thread(target=worker, args=(s,)) for s in range(0, 800, 100)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(index) == 800
        assert sorted(index, key=int)[:3] == ["0", "1", "2"]
