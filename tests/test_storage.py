from unittest.mock import MagicMock

import pytest
import requests
from botocore.exceptions import ClientError

from genqueue.errors import PersistenceFailed
from genqueue.storage import AssetStore, decode_inline, extension_for, fetch_remote
from tests.conftest import image_response


def test_persist_with_public_base():
    s3 = MagicMock()
    store = AssetStore(client=s3, bucket="bucket", public_base_url="https://cdn.test/")

    url = store.persist(b"img", "image/png", "generated/ws/job.png")

    assert url == "https://cdn.test/generated/ws/job.png"
    s3.put_object.assert_called_once_with(
        Bucket="bucket", Key="generated/ws/job.png", Body=b"img", ContentType="image/png")


def test_persist_presigns_without_public_base():
    s3 = MagicMock()
    s3.generate_presigned_url.return_value = "https://s3.test/signed"
    store = AssetStore(client=s3, bucket="bucket", public_base_url="")

    assert store.persist(b"img", "image/png", "k.png") == "https://s3.test/signed"
    assert s3.generate_presigned_url.call_args.kwargs["Params"] == {"Bucket": "bucket", "Key": "k.png"}


def test_persist_client_error():
    s3 = MagicMock()
    s3.put_object.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "no"}}, "PutObject")
    with pytest.raises(PersistenceFailed, match="S3 upload failed"):
        AssetStore(client=s3, bucket="bucket").persist(b"img", "image/png", "k.png")


def test_persist_needs_bucket(monkeypatch):
    from genqueue.settings import settings

    monkeypatch.setattr(settings, "S3_BUCKET", None)
    with pytest.raises(PersistenceFailed, match="S3_BUCKET"):
        AssetStore(client=MagicMock()).persist(b"img", "image/png", "k.png")


@pytest.mark.parametrize("ctype,ext", [("image/png", ".png"), ("image/jpeg", ".jpg"),
                                       ("image/png; charset=binary", ".png")])
def test_extension_for(ctype, ext):
    assert extension_for(ctype) == ext


def test_decode_inline():
    assert decode_inline("data:image/jpeg;base64,aW1n") == (b"img", "image/jpeg")
    with pytest.raises(PersistenceFailed):
        decode_inline("data:image/png;base64,")
    with pytest.raises(PersistenceFailed):
        decode_inline("data:image/png;base64,@@@")


def test_fetch_remote():
    session = MagicMock()
    session.get.return_value = image_response(b"jpg", "image/jpeg; q=1")
    assert fetch_remote("https://kie.test/x", session) == (b"jpg", "image/jpeg")


@pytest.mark.parametrize("resp,err", [
    (image_response(status=404), "404"),
    (image_response(content=b""), "empty body"),
])
def test_fetch_remote_bad_response(resp, err):
    session = MagicMock()
    session.get.return_value = resp
    with pytest.raises(PersistenceFailed, match=err):
        fetch_remote("https://kie.test/x", session)


def test_fetch_remote_network_error():
    session = MagicMock()
    session.get.side_effect = requests.Timeout("slow")
    with pytest.raises(PersistenceFailed, match="Failed to download"):
        fetch_remote("https://kie.test/x", session)
