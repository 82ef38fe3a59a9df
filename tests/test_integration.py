from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from loanledger.api import app, get_library
from loanledger.library import Library

# Mark this module as integration
pytestmark = pytest.mark.integration

PREFIX = "/api/v1"


@pytest.fixture
def test_client(db_file, clock):
    """HTTP client over a fresh ledger file."""
    library = Library(db_file=db_file, clock=clock)
    app.dependency_overrides[get_library] = lambda: library
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        library.close()


def test_front_desk_day(test_client, clock, make_isbn):
    """Stock up, lend, run late, return and check the dashboard at each step."""
    books = []
    for i, (title, stock) in enumerate([("Ulysses", 1), ("Dubliners", 2), ("Sapiens", 0)]):
        response = test_client.post(
            f"{PREFIX}/books", json={"book": {"title": title, "isbn": make_isbn(100 + i), "stock": stock}}
        )
        assert response.status_code == 201
        books.append(response.json())

    people = []
    for i, name in enumerate(["Ada Lovelace", "Grace Hopper", "Alan Turing"]):
        response = test_client.post(
            f"{PREFIX}/borrowers",
            json={"borrower": {"id_card_number": f"ID-{i}", "name": name, "email": f"p{i}@example.com"}},
        )
        people.append(response.json())

    # The lending form only offers books with copies and borrowers without a loan
    lendable = [b for b in test_client.get(f"{PREFIX}/books").json() if b["available_copies"] > 0]
    assert {b["title"] for b in lendable} == {"Ulysses", "Dubliners"}

    soon = (clock.now() + timedelta(days=2)).isoformat()
    later = (clock.now() + timedelta(days=21)).isoformat()

    first = test_client.post(
        f"{PREFIX}/loans", json={"loan": {"book_id": books[0]["id"], "borrower_id": people[0]["id"], "due_date": soon}}
    ).json()
    second = test_client.post(
        f"{PREFIX}/loans", json={"loan": {"book_id": books[1]["id"], "borrower_id": people[1]["id"], "due_date": later}}
    ).json()
    refused = test_client.post(
        f"{PREFIX}/loans", json={"loan": {"book_id": books[2]["id"], "borrower_id": people[2]["id"], "due_date": later}}
    )
    assert refused.json()["error"] == "NoCopiesAvailable"

    available = [b for b in test_client.get(f"{PREFIX}/borrowers").json() if not b["has_active_loan"]]
    assert [b["name"] for b in available] == ["Alan Turing"]

    clock.advance(days=5)
    stats = test_client.get(f"{PREFIX}/stats").json()
    assert (stats["total_loans"], stats["active_loans"], stats["overdue_loans"]) == (2, 2, 1)

    loans = test_client.get(f"{PREFIX}/loans").json()
    by_id = {l["id"]: l for l in loans}
    assert by_id[first["id"]]["overdue"] is True
    assert by_id[first["id"]]["days_overdue"] == 3
    assert by_id[second["id"]]["overdue"] is False

    test_client.post(f"{PREFIX}/loans/{first['id']}/return_book")
    stats = test_client.get(f"{PREFIX}/stats").json()
    assert (stats["active_loans"], stats["overdue_loans"], stats["returned_loans"]) == (1, 0, 1)
    assert test_client.get(f"{PREFIX}/books/{books[0]['id']}").json()["available_copies"] == 1

    # Returned loans stay in the ledger
    returned = test_client.get(f"{PREFIX}/loans", params={"status": "returned"}).json()
    assert [l["id"] for l in returned] == [first["id"]]
    assert returned[0]["overdue"] is False
