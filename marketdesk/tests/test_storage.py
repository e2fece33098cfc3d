import unittest
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from marketdesk.errors import StorageError
from marketdesk.storage import InMemoryStorageClient, S3StorageClient
from marketdesk.uploads import UploadItem, storage_path_for, upload_images


def _client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "HeadObject")


class InMemoryStorageClientTests(unittest.TestCase):
    def test_resolve_url_requires_object(self):
        storage = InMemoryStorageClient()
        storage.upload_bytes("blog/a.png", b"x")
        self.assertEqual(storage.resolve_url("blog/a.png"), storage.public_url("blog/a.png"))
        with self.assertRaises(FileNotFoundError):
            storage.resolve_url("blog/b.png")

    def test_duplicate_upload_rejected(self):
        storage = InMemoryStorageClient()
        storage.upload_bytes("blog/a.png", b"x")
        with self.assertRaises(StorageError):
            storage.upload_bytes("blog/a.png", b"y")


class S3StorageClientTests(unittest.TestCase):
    @patch("marketdesk.storage.boto3.client")
    def _client(self, boto_client, public_base_url=None):
        s3 = MagicMock()
        boto_client.return_value = s3
        client = S3StorageClient(
            bucket="images",
            region="us-east-1",
            endpoint="https://abc.supabase.co/storage/v1/s3",
            access_key_id="key",
            secret_access_key="secret",
            public_base_url=public_base_url,
        )
        return client, s3

    def test_public_url_with_base(self):
        client, _ = self._client(public_base_url="https://cdn.test/images/")
        self.assertEqual(client.public_url("blog/a.png"), "https://cdn.test/images/blog/a.png")

    def test_public_url_falls_back_to_presigned(self):
        client, s3 = self._client()
        s3.generate_presigned_url.return_value = "https://signed"
        self.assertEqual(client.public_url("blog/a.png"), "https://signed")
        s3.generate_presigned_url.assert_called_once_with(
            ClientMethod="get_object",
            Params={"Bucket": "images", "Key": "blog/a.png"},
            ExpiresIn=3600,
        )

    def test_resolve_url_missing_object(self):
        client, s3 = self._client(public_base_url="https://cdn.test/images")
        s3.head_object.side_effect = _client_error("404")
        with self.assertRaises(FileNotFoundError):
            client.resolve_url("blog/a.png")

    def test_exists_surfaces_other_errors(self):
        client, s3 = self._client()
        s3.head_object.side_effect = _client_error("403")
        with self.assertRaises(StorageError):
            client.exists("blog/a.png")

    def test_upload_wraps_client_errors(self):
        client, s3 = self._client()
        s3.put_object.side_effect = _client_error("500")
        with self.assertRaises(StorageError):
            client.upload_bytes("blog/a.png", b"x", content_type="image/png")


class UploadImagesTests(unittest.TestCase):
    def test_storage_path_format(self):
        path = storage_path_for("market", "Chart.PNG")
        self.assertRegex(path, r"^market/\d{13}-[0-9a-f]{13}\.png$")

    def test_skips_non_images_and_failed_uploads(self):
        storage = InMemoryStorageClient()
        calls = []
        original = storage.upload_bytes

        def flaky(path, data, content_type="application/octet-stream"):
            calls.append(path)
            if data == b"bad":
                raise StorageError("quota exceeded")
            return original(path, data, content_type)

        storage.upload_bytes = flaky
        files = [
            UploadItem("a.png", b"a", "image/png"),
            UploadItem("notes.txt", b"t", "text/plain"),
            UploadItem("b.jpg", b"bad", "image/jpeg"),
            UploadItem("c.webp", b"c", "image/webp"),
        ]

        with self.assertLogs("marketdesk.uploads", level="WARNING"):
            paths = upload_images(storage, files, "blog")

        self.assertEqual(len(calls), 3)
        self.assertEqual(len(paths), 2)
        self.assertTrue(paths[0].endswith(".png"))
        self.assertTrue(paths[1].endswith(".webp"))
        self.assertTrue(all(p.startswith("blog/") for p in paths))
        self.assertEqual(set(paths), set(storage.stored_objects))

    def test_empty_batch(self):
        self.assertEqual(upload_images(InMemoryStorageClient(), [], "insight"), [])


if __name__ == "__main__":
    unittest.main()
