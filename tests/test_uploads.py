import os

from config import settings
from storage import images_dir
from tests.conftest import auth

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 128


def test_seller_uploads_image(client, seller):
    res = client.post("/api/upload/image", files={"image": ("photo.PNG", PNG, "image/png")}, headers=auth(seller))
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["filename"].endswith(".png")
    assert data["size"] == len(PNG)
    assert data["url"] == f"http://testserver/uploads/products/{data['filename']}"
    assert os.path.exists(os.path.join(images_dir(), data["filename"]))

    served = client.get(f"/uploads/products/{data['filename']}")
    assert served.status_code == 200
    assert served.content == PNG


def test_disallowed_mime_type_is_rejected(client, seller):
    res = client.post("/api/upload/image", files={"image": ("notes.txt", b"hello", "text/plain")}, headers=auth(seller))
    assert res.status_code == 400
    assert res.json()["message"].startswith("Invalid file type")


def test_oversized_file_is_rejected_and_removed(client, seller):
    before = set(os.listdir(images_dir()))
    big = b"\x00" * (settings.MAX_UPLOAD_BYTES + 1)
    res = client.post("/api/upload/image", files={"image": ("big.jpg", big, "image/jpeg")}, headers=auth(seller))
    assert res.status_code == 400
    assert res.json()["message"].startswith("File too large")
    assert set(os.listdir(images_dir())) == before


def test_buyers_cannot_upload(client, buyer):
    res = client.post("/api/upload/image", files={"image": ("photo.png", PNG, "image/png")}, headers=auth(buyer))
    assert res.status_code == 403


def test_multiple_images(client, seller):
    files = [("images", (f"p{i}.webp", PNG, "image/webp")) for i in range(3)]
    res = client.post("/api/upload/images", files=files, headers=auth(seller))
    assert res.status_code == 201
    assert len(res.json()["data"]["images"]) == 3


def test_too_many_images(client, seller):
    files = [("images", (f"p{i}.png", PNG, "image/png")) for i in range(settings.MAX_UPLOAD_FILES + 1)]
    res = client.post("/api/upload/images", files=files, headers=auth(seller))
    assert res.status_code == 400


def test_delete_image(client, seller):
    filename = client.post("/api/upload/image", files={"image": ("a.gif", PNG, "image/gif")}, headers=auth(seller)).json()["data"]["filename"]
    assert client.delete(f"/api/upload/{filename}", headers=auth(seller)).status_code == 200
    assert not os.path.exists(os.path.join(images_dir(), filename))
    # already gone
    assert client.delete(f"/api/upload/{filename}", headers=auth(seller)).status_code == 200


def test_delete_rejects_traversal(client, seller):
    res = client.delete("/api/upload/..secret", headers=auth(seller))
    assert res.status_code == 400
