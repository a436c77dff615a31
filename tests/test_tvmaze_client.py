from unittest.mock import MagicMock

import pytest

from models import ShowImage
from tvmaze_client import TVMazeClient


def page_response(items=None, status=200):
    response = MagicMock()
    response.ok = 200 <= status < 400
    response.status_code = status
    response.json.return_value = items
    return response


SHOW_1 = {
    "id": 1,
    "name": "Under the Dome",
    "genres": ["Drama", "Science-Fiction", "Thriller"],
    "image": {
        "medium": "https://static.tvmaze.com/uploads/images/medium_portrait/81/202627.jpg",
        "original": "https://static.tvmaze.com/uploads/images/original_untouched/81/202627.jpg",
    },
    "summary": "<p><b>Under the Dome</b> is the story of a small town.</p>",
}


class TestTVMazeClient:
    """Test paging through the show index"""

    @pytest.fixture
    def session(self):
        return MagicMock()

    @pytest.fixture
    def client(self, session):
        return TVMazeClient(session=session)

    def test_parses_show(self, client, session):
        session.get.return_value = page_response([SHOW_1])

        shows = client.get_page(0)

        show = shows[0]
        assert show.id == 1
        assert show.genres == ("Drama", "Science-Fiction", "Thriller")
        assert show.image == ShowImage(SHOW_1["image"]["medium"], SHOW_1["image"]["original"])
        session.get.assert_called_once_with("https://api.tvmaze.com/shows", params={"page": 0})

    def test_null_fields(self, client, session):
        session.get.return_value = page_response([{"id": 2, "name": None, "image": None,
                                                   "summary": None, "genres": None}])

        show = client.get_page(0)[0]

        assert show.display_name == "Show 2"
        assert show.image is None
        assert show.genres == ()

    def test_malformed_records_are_skipped(self, client, session):
        session.get.return_value = page_response([{"name": "no id"}, SHOW_1])

        assert [s.id for s in client.get_page(3)] == [1]

    def test_missing_page_returns_none(self, client, session):
        session.get.return_value = page_response(status=404)

        assert client.get_page(999) is None

    def test_fetch_all_stops_at_404(self, client, session):
        session.get.side_effect = [
            page_response([SHOW_1, dict(SHOW_1, id=2)]),
            page_response([dict(SHOW_1, id=250)]),
            page_response(status=404),
        ]

        shows = client.fetch_all_shows()

        assert [s.id for s in shows] == [1, 2, 250]
        assert [c[1]["params"]["page"] for c in session.get.call_args_list] == [0, 1, 2]

    def test_fetch_all_stops_at_empty_page(self, client, session):
        session.get.side_effect = [page_response([SHOW_1]), page_response([])]

        assert len(client.fetch_all_shows(start_page=5)) == 1
        assert session.get.call_args_list[0][1]["params"] == {"page": 5}
