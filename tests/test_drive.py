import asyncio
import json
import os

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from mineworker.exceptions import TransferException
from mineworker.manager.drive import DriveTransport, UploadStateStore

MIB = 1024 * 1024


class FakeDrive:
    """
    Just enough of the Drive v3 API to exercise resumable uploads and media downloads.
    """

    def __init__(self):
        self.posts = []
        self.ranges = []
        self.received = {}
        self.fail_on_chunk = None
        self.chunk_count = 0
        self.files = {}
        self.listing = []
        self.list_params = None
        self.html_responses = False
        self.bad_range = False

    def app(self):
        app = web.Application(client_max_size=64 * MIB)
        app.router.add_post("/upload", self.open_session)
        app.router.add_put("/session/{sid}", self.put_chunk)
        app.router.add_get("/files", self.list_files)
        app.router.add_get("/files/{fid}", self.get_file)
        return app

    async def open_session(self, request):
        self.posts.append({
            "query": dict(request.query),
            "headers": dict(request.headers),
            "body": json.loads(await request.text()),
        })
        sid = str(len(self.posts))
        self.received[sid] = 0
        return web.Response(status=200, headers={"Location": f"{request.scheme}://{request.host}/session/{sid}"})

    async def put_chunk(self, request):
        sid = request.match_info["sid"]
        body = await request.read()
        content_range = request.headers["Content-Range"]
        total = int(content_range.rsplit("/", 1)[-1])
        if content_range.startswith("bytes */"):
            if self.received[sid] >= total:
                return web.json_response({"id": f"file-{sid}"})
            headers = {"Range": f"bytes=0-{self.received[sid] - 1}"} if self.received[sid] else {}
            if self.bad_range:
                headers = {"Range": "bytes=unknown"}
            return web.Response(status=308, headers=headers)

        self.chunk_count += 1
        if self.fail_on_chunk == self.chunk_count:
            return web.Response(status=503, text="backend error")
        self.ranges.append(content_range)
        start, end = content_range.split(" ")[1].split("/")[0].split("-")
        assert int(start) == self.received[sid]
        assert len(body) == int(end) - int(start) + 1
        self.received[sid] = int(end) + 1
        if self.received[sid] == total:
            if self.html_responses:
                return web.Response(text="<html>proxy error</html>", content_type="text/html")
            return web.json_response({"id": f"file-{sid}", "name": "world.zip"}, status=200)
        return web.Response(status=308, headers={"Range": f"bytes=0-{end}"})

    async def list_files(self, request):
        self.list_params = dict(request.query)
        if self.html_responses:
            return web.Response(text="<html>proxy error</html>", content_type="text/html")
        return web.json_response({"files": self.listing})

    async def get_file(self, request):
        content = self.files.get(request.match_info["fid"])
        if content is None:
            return web.Response(status=404)
        return web.Response(body=content, content_type="application/zip")


async def fake_token():
    return "test-token"


def run_with_drive(drive, scenario, **transport_args):
    async def runner():
        server = TestServer(drive.app())
        await server.start_server()
        try:
            async with aiohttp.ClientSession() as session:
                transport = DriveTransport(
                    fake_token,
                    session=session,
                    upload_url=str(server.make_url("/upload")),
                    files_url=str(server.make_url("/files")),
                    **transport_args,
                )
                return await scenario(transport)
        finally:
            await server.close()

    return asyncio.run(runner())


def make_file(path, size):
    path.write_bytes(os.urandom(size))
    return path


def test_upload_of_12_mib_uses_three_chunks(tmp_path):
    drive = FakeDrive()
    archive = make_file(tmp_path / "world.zip", 12 * MIB)
    progress = []

    async def on_progress(done, total):
        progress.append((done, total))

    file_id = run_with_drive(
        drive, lambda t: t.upload(archive, "folder-1", "world.zip", progress=on_progress)
    )

    assert file_id == "file-1"
    assert drive.ranges == [
        "bytes 0-5242879/12582912",
        "bytes 5242880-10485759/12582912",
        "bytes 10485760-12582911/12582912",
    ]
    assert progress == [(5242880, 12582912), (10485760, 12582912), (12582912, 12582912)]


def test_upload_session_request(tmp_path):
    drive = FakeDrive()
    archive = make_file(tmp_path / "world.zip", 100)

    run_with_drive(drive, lambda t: t.upload(archive, "folder-1", "10-18-2026.zip"))

    post = drive.posts[0]
    assert post["query"] == {"uploadType": "resumable"}
    assert post["body"] == {"name": "10-18-2026.zip", "parents": ["folder-1"]}
    assert post["headers"]["Authorization"] == "Bearer test-token"
    assert post["headers"]["X-Upload-Content-Type"] == "application/zip"
    assert post["headers"]["X-Upload-Content-Length"] == "100"


@pytest.mark.parametrize("size", [1, 6, 7, 8, 20, 21, 50])
def test_chunk_ranges_cover_file_exactly(tmp_path, size):
    drive = FakeDrive()
    archive = make_file(tmp_path / "world.zip", size)
    progress = []

    async def on_progress(done, total):
        progress.append(done)

    run_with_drive(drive, lambda t: t.upload(archive, "f", "w.zip", progress=on_progress), chunk_size=7)

    lengths = []
    for content_range in drive.ranges:
        start, end = content_range.split(" ")[1].split("/")[0].split("-")
        lengths.append(int(end) - int(start) + 1)
    assert sum(lengths) == size
    assert drive.ranges[-1].endswith(f"-{size - 1}/{size}")
    assert progress == sorted(progress)
    assert progress[-1] == size


def test_empty_file_upload(tmp_path):
    drive = FakeDrive()
    archive = make_file(tmp_path / "world.zip", 0)

    assert run_with_drive(drive, lambda t: t.upload(archive, "f", "w.zip")) == "file-1"
    assert drive.ranges == []


def test_rejected_chunk_aborts_upload(tmp_path):
    drive = FakeDrive()
    drive.fail_on_chunk = 2
    archive = make_file(tmp_path / "world.zip", 20)
    progress = []

    async def on_progress(done, total):
        progress.append(done)

    with pytest.raises(TransferException) as e:
        run_with_drive(drive, lambda t: t.upload(archive, "f", "w.zip", progress=on_progress), chunk_size=7)

    assert e.value.status == 503
    assert progress == [7]
    assert drive.chunk_count == 2


def test_failed_upload_resumes_from_acknowledged_offset(tmp_path):
    drive = FakeDrive()
    drive.fail_on_chunk = 2
    archive = make_file(tmp_path / "world.zip", 20)
    store = UploadStateStore(tmp_path / "upload_state.json")
    saved = {}

    async def scenario(transport):
        with pytest.raises(TransferException):
            await transport.upload(archive, "f", "w.zip")
        saved["offset"] = store.get(archive, 20)["offset"]
        saved["pending"] = store.pending()
        return await transport.upload(archive, "f", "w.zip")

    file_id = run_with_drive(drive, scenario, chunk_size=7, state_store=store)

    assert saved == {"offset": 7, "pending": [archive.resolve()]}
    assert file_id == "file-1"
    assert len(drive.posts) == 1
    assert drive.ranges == ["bytes 0-6/20", "bytes 7-13/20", "bytes 14-19/20"]
    assert store.get(archive, 20) is None


def test_stale_saved_session_starts_over(tmp_path):
    drive = FakeDrive()
    archive = make_file(tmp_path / "world.zip", 10)
    store = UploadStateStore(tmp_path / "upload_state.json")
    store.put(archive, 10, "http://127.0.0.1:1/gone", 7)

    file_id = run_with_drive(drive, lambda t: t.upload(archive, "f", "w.zip"), chunk_size=7, state_store=store)

    assert file_id == "file-1"
    assert drive.ranges == ["bytes 0-6/10", "bytes 7-9/10"]


def test_unreadable_saved_range_starts_over(tmp_path):
    drive = FakeDrive()
    drive.fail_on_chunk = 2
    archive = make_file(tmp_path / "world.zip", 20)
    store = UploadStateStore(tmp_path / "upload_state.json")

    async def scenario(transport):
        with pytest.raises(TransferException):
            await transport.upload(archive, "f", "w.zip")
        drive.bad_range = True
        return await transport.upload(archive, "f", "w.zip")

    file_id = run_with_drive(drive, scenario, chunk_size=7, state_store=store)

    assert file_id == "file-2"
    assert len(drive.posts) == 2
    assert drive.ranges[-3:] == ["bytes 0-6/20", "bytes 7-13/20", "bytes 14-19/20"]


def test_non_json_final_chunk_response_is_a_transfer_error(tmp_path):
    drive = FakeDrive()
    drive.html_responses = True
    archive = make_file(tmp_path / "world.zip", 10)

    with pytest.raises(TransferException):
        run_with_drive(drive, lambda t: t.upload(archive, "f", "w.zip"), chunk_size=7)

    assert drive.ranges == ["bytes 0-6/10", "bytes 7-9/10"]


def test_saved_state_for_changed_file_is_ignored(tmp_path):
    archive = make_file(tmp_path / "world.zip", 10)
    store = UploadStateStore(tmp_path / "upload_state.json")
    store.put(archive, 12, "http://example.invalid/session", 7)

    assert store.get(archive, 10) is None
    assert store.pending() == []


def test_download_writes_file_and_reports_progress(tmp_path):
    drive = FakeDrive()
    drive.files["abc"] = os.urandom(300 * 1024)
    dest = tmp_path / "world.zip"
    progress = []

    async def on_progress(done, total):
        progress.append((done, total))

    run_with_drive(drive, lambda t: t.download("abc", dest, total=300 * 1024, progress=on_progress))

    assert dest.read_bytes() == drive.files["abc"]
    assert progress[-1] == (300 * 1024, 300 * 1024)
    assert [p[0] for p in progress] == sorted(p[0] for p in progress)


def test_download_error_leaves_no_file(tmp_path):
    drive = FakeDrive()
    dest = tmp_path / "world.zip"

    with pytest.raises(TransferException) as e:
        run_with_drive(drive, lambda t: t.download("missing", dest))

    assert e.value.status == 404
    assert not dest.exists()


def test_short_download_is_deleted(tmp_path):
    drive = FakeDrive()
    drive.files["abc"] = b"x" * 1000
    dest = tmp_path / "world.zip"

    with pytest.raises(TransferException):
        run_with_drive(drive, lambda t: t.download("abc", dest, total=5000))

    assert not dest.exists()


def test_list_remote_archives_newest_first(tmp_path):
    drive = FakeDrive()
    drive.listing = [
        {"id": "old", "name": "old.zip", "modifiedTime": "2026-01-01T10:00:00.000Z", "size": "10"},
        {"id": "new", "name": "new.zip", "modifiedTime": "2026-10-01T10:00:00.000Z", "size": "2048"},
    ]

    archives = run_with_drive(drive, lambda t: t.list_remote_archives("folder-1"))

    assert [a.id for a in archives] == ["new", "old"]
    assert archives[0].size_bytes == 2048
    assert archives[0].modified_at.year == 2026
    assert drive.list_params["q"] == (
        "'folder-1' in parents and trashed = false and mimeType = 'application/zip'"
    )
    assert drive.list_params["orderBy"] == "modifiedTime desc"


def test_non_json_listing_is_a_transfer_error(tmp_path):
    drive = FakeDrive()
    drive.html_responses = True

    with pytest.raises(TransferException):
        run_with_drive(drive, lambda t: t.list_remote_archives("folder-1"))
