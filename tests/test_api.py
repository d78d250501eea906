import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from onecount import api, config
from onecount.gemini_ocr import AnalysisError
from onecount.ledger import Ledger
from onecount.models import ParsedItem, ParsedReceipt


def png_bytes(size=(40, 60)):
    buffer = io.BytesIO()
    Image.new("RGB", size, color=(250, 250, 250)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def ledger():
    return Ledger(initial_members=["Alice", "Bob"])


@pytest.fixture
def client(ledger):
    api.app.dependency_overrides[api.get_ledger] = lambda: ledger
    yield TestClient(api.app)
    api.app.dependency_overrides.clear()


def use_analyzer(analyzer):
    api.app.dependency_overrides[api.get_receipt_analyzer] = lambda: analyzer


def upload(client, data=None, **params):
    files = {"file": ("receipt.png", data if data is not None else png_bytes(), "image/png")}
    return client.post("/upload-receipt", files=files, params=params)


def test_root(client):
    assert client.get("/").json() == {"message": "onecount API is running"}


def test_member_and_item_flow(client):
    carol = client.post("/members", json={"name": "Carol"}).json()
    assert carol["name"] == "Carol"

    item = client.post("/items", json={"name": "Nachos", "price": "9,00"}).json()
    assert item["price"] == 9.0
    assert carol["id"] in item["assigned_members"]

    updated = client.patch(f"/items/{item['id']}", json={"assigned_members": [carol["id"]]}).json()
    assert updated["assigned_members"] == [carol["id"]]

    breakdown = client.get("/breakdown").json()
    totals = {m["name"]: m["total"] for m in breakdown["members"]}
    assert totals == {"Alice": 0, "Bob": 0, "Carol": 9}

    assert client.delete(f"/members/{carol['id']}").json() == {"removed": True}
    bill = client.get("/bill").json()
    assert bill["items"][0]["assigned_members"] == []
    assert bill["status"] == "editing"


def test_blank_member_rejected(client):
    assert client.post("/members", json={"name": ""}).status_code == 422
    assert client.post("/members", json={"name": "   "}).status_code == 422


def test_unknown_item_is_404(client):
    assert client.patch("/items/nope", json={"name": "x"}).status_code == 404
    assert client.post("/items/nope/assign-all").status_code == 404


def test_claim_and_toggle_endpoints(client, ledger):
    alice, bob = ledger.members
    item = client.post("/items", json={"name": "Cake", "price": 6}).json()

    claimed = client.post(f"/items/{item['id']}/claim/{bob.id}").json()
    assert claimed["assigned_members"] == [bob.id]
    toggled = client.post(f"/items/{item['id']}/toggle/{alice.id}").json()
    assert toggled["assigned_members"] == [bob.id, alice.id]


def test_tip_accepts_text(client):
    assert client.put("/tip", json={"tip": "garbage"}).json()["tip"] == 0
    assert client.put("/tip", json={"tip": 4}).json()["tip"] == 4


def test_upload_and_analyze_receipt(client, ledger):
    async def analyzer(image_bytes):
        assert image_bytes
        return ParsedReceipt(
            items=[ParsedItem(name="Pizza", price=20), ParsedItem(name="Pfand", price=2),
                   ParsedItem(name="Pfand Crate", price=3)],
            tip=5,
            merchant_name="Luigi",
        )
    use_analyzer(analyzer)

    response = upload(client)

    assert response.status_code == 200
    body = response.json()
    assert body["analyzed"] is True
    assert [i["name"] for i in body["new_items"]] == ["Pizza", "Pfand (Summarized)"]
    assert body["metadata"]["name"] == "Luigi"
    assert body["tip"] == 5
    assert ledger.receipt_image is not None

    breakdown = client.get("/breakdown").json()
    assert breakdown["final_total"] == pytest.approx(30)
    assert all(m["total"] == pytest.approx(15) for m in breakdown["members"])


def test_members_added_during_analysis_are_included(client, ledger):
    async def analyzer(image_bytes):
        ledger.add_member("Late")
        return ParsedReceipt(items=[ParsedItem(name="Wine", price=30)])
    use_analyzer(analyzer)

    body = upload(client).json()

    late = next(m for m in ledger.members if m.name == "Late")
    assert late.id in body["new_items"][0]["assigned_members"]


def test_analysis_failure_leaves_bill_untouched(client, ledger):
    async def analyzer(image_bytes):
        raise AnalysisError("boom")
    use_analyzer(analyzer)
    ledger.add_item("Existing", 3)
    before = client.get("/bill").json()

    response = upload(client)

    assert response.status_code == 502
    assert "try again" in response.json()["detail"]
    assert client.get("/bill").json() == before


def test_oversized_upload_rejected(client, ledger, monkeypatch):
    async def analyzer(image_bytes):
        raise AssertionError("analysis must not run")
    use_analyzer(analyzer)
    monkeypatch.setattr(config, "MAX_IMAGE_SIZE_BYTES", 10)

    response = upload(client)

    assert response.status_code == 400
    assert ledger.receipt_image is None
    assert ledger.items == []


def test_unreadable_image_rejected(client, ledger):
    response = upload(client, data=b"definitely not an image", analyze="false")
    assert response.status_code == 400
    assert ledger.receipt_image is None


def test_upload_without_analysis_only_attaches_image(client, ledger):
    body = upload(client, analyze="false").json()
    assert body["analyzed"] is False
    assert ledger.items == []
    assert ledger.receipt_image is not None


def test_finalize_reopen_and_summary(client):
    assert client.post("/finalize").json() is None

    client.post("/items", json={"name": "Burger", "price": 12})
    client.put("/tip", json={"tip": 2})
    folder = client.post("/finalize").json()
    assert folder["total"] == pytest.approx(14)
    assert folder["name"] == "Bill #1"

    assert [f["id"] for f in client.get("/folders").json()] == [folder["id"]]
    assert client.get(f"/folders/{folder['id']}").json()["id"] == folder["id"]
    folder_breakdown = client.get(f"/folders/{folder['id']}/breakdown").json()
    assert [m["total"] for m in folder_breakdown["members"]] == [pytest.approx(7), pytest.approx(7)]

    summary = client.get("/summary").json()
    assert summary["grand_total"] == pytest.approx(14)
    assert [p["name"] for p in summary["per_person"]] == ["Alice", "Bob"]

    reopened = client.post(f"/folders/{folder['id']}/reopen").json()
    assert reopened["reopened"] is True
    assert reopened["bill"]["tip"] == 2
    assert reopened["bill"]["metadata"]["name"] == "Bill #1"
    assert client.get("/folders").json() == []
    assert client.get(f"/folders/{folder['id']}").status_code == 404

    missing = client.post("/folders/unknown/reopen").json()
    assert missing["reopened"] is False
    assert len(missing["bill"]["items"]) == 1
