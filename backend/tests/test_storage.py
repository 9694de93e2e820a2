"""MinioFileStorage against a mocked MinIO client."""
from unittest.mock import MagicMock

from app.services.storage import MinioFileStorage


def _storage(exists: bool = True):
    client = MagicMock()
    client.bucket_exists.return_value = exists
    return MinioFileStorage(client, "audit-imports"), client


def test_upload_puts_object():
    storage, client = _storage()

    path = storage.upload("imports/a/b.csv", b"Title\nx\n", "text/csv")

    assert path == "imports/a/b.csv"
    kwargs = client.put_object.call_args.kwargs
    assert kwargs["bucket_name"] == "audit-imports"
    assert kwargs["length"] == 8
    assert kwargs["data"].read() == b"Title\nx\n"


def test_download_reads_and_releases():
    storage, client = _storage()
    response = client.get_object.return_value
    response.read.return_value = b"payload"

    assert storage.download("imports/a/b.csv") == b"payload"
    response.close.assert_called_once()
    response.release_conn.assert_called_once()


def test_ensure_bucket_creates_missing_bucket():
    storage, client = _storage(exists=False)
    storage.ensure_bucket()
    client.make_bucket.assert_called_once_with("audit-imports")


def test_ensure_bucket_leaves_existing_bucket():
    storage, client = _storage(exists=True)
    storage.ensure_bucket()
    client.make_bucket.assert_not_called()
