import unittest
from base64 import b64decode

import httpx

from relaybot.chat.attachments import (
    AttachmentDescriptor,
    AttachmentFetcher,
    infer_mime_type,
    summarize_attachments,
    to_content_part,
    validate_declared,
    validate_downloaded,
)
from relaybot.chat.errors import (
    AttachmentDownloadFailed,
    AttachmentTooLarge,
    AttachmentTooLargeAfterDownload,
    AttachmentUnsupportedType,
)

MB = 1024 * 1024


class TestInferMimeType(unittest.TestCase):
    def test_supported_declared_type_wins(self):
        self.assertEqual(infer_mime_type("photo.pdf", "image/png"), "image/png")

    def test_extension_beats_unsupported_declared_type(self):
        self.assertEqual(infer_mime_type("scan.PDF", "text/plain"), "application/pdf")
        self.assertEqual(infer_mime_type("a.jpeg", None), "image/jpeg")

    def test_unknown_extension_keeps_declared_type(self):
        self.assertEqual(infer_mime_type("notes.txt", "text/plain"), "text/plain")

    def test_generic_fallback(self):
        self.assertEqual(infer_mime_type("blob", None), "application/octet-stream")
        self.assertEqual(infer_mime_type(None, ""), "application/octet-stream")


class TestValidation(unittest.TestCase):
    def test_too_large_declared(self):
        d = AttachmentDescriptor("big.png", "https://cdn/big.png", size=9 * MB, content_type="image/png")
        with self.assertRaises(AttachmentTooLarge) as ctx:
            validate_declared(d, 8 * MB)
        self.assertEqual(ctx.exception.filename, "big.png")
        self.assertEqual(ctx.exception.max_bytes, 8 * MB)

    def test_unsupported_type(self):
        d = AttachmentDescriptor("run.exe", "https://cdn/run.exe", size=10, content_type="application/x-msdownload")
        with self.assertRaises(AttachmentUnsupportedType) as ctx:
            validate_declared(d, 8 * MB)
        self.assertEqual(ctx.exception.mime_type, "application/x-msdownload")

    def test_unknown_size_is_accepted_before_download(self):
        d = AttachmentDescriptor("doc.pdf", "https://cdn/doc.pdf")
        self.assertEqual(validate_declared(d, 1024), "application/pdf")

    def test_downloaded_size(self):
        validate_downloaded("a.png", b"x" * 1024, 1024)
        with self.assertRaises(AttachmentTooLargeAfterDownload):
            validate_downloaded("a.png", b"x" * 1025, 1024)

    def test_content_part_is_data_url(self):
        part = to_content_part("image/png", b"\x89PNG")
        url = part["image_url"]["url"]
        self.assertTrue(url.startswith("data:image/png;base64,"))
        self.assertEqual(b64decode(url.split(",", 1)[1]), b"\x89PNG")

    def test_summary(self):
        self.assertEqual(summarize_attachments([]), "")
        self.assertEqual(summarize_attachments(["a", "b"]), "• a\n• b")
        self.assertEqual(summarize_attachments(list("abcde")), "• a\n• b\n• c\n... and 2 more")


class TestAttachmentFetcher(unittest.IsolatedAsyncioTestCase):
    def make_fetcher(self, handler):
        return AttachmentFetcher(httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    async def test_fetch_returns_bytes(self):
        fetcher = self.make_fetcher(lambda request: httpx.Response(200, content=b"data"))
        d = AttachmentDescriptor("a.png", "https://cdn.example/a.png")
        self.assertEqual(await fetcher.fetch(d), b"data")
        await fetcher.aclose()

    async def test_http_error_status(self):
        fetcher = self.make_fetcher(lambda request: httpx.Response(404))
        d = AttachmentDescriptor("a.png", "https://cdn.example/a.png")
        with self.assertRaises(AttachmentDownloadFailed) as ctx:
            await fetcher.fetch(d)
        self.assertEqual(ctx.exception.reason, "HTTP 404")
        await fetcher.aclose()

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        fetcher = self.make_fetcher(handler)
        with self.assertRaises(AttachmentDownloadFailed):
            await fetcher.fetch(AttachmentDescriptor("a.png", "https://cdn.example/a.png"))
        await fetcher.aclose()


if __name__ == "__main__":
    unittest.main()
