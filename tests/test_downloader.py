import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from hanihunter.downloader import (
    DownloadError,
    DownloadOption,
    Downloader,
    MediaPlaylist,
    ProgressEvent,
    clamp_ratio,
    create_file_list,
    format_videos_info,
    get_key_iv,
    normalize_status,
    parse_media_playlist,
    save_ts,
)
from hanihunter.resolvers.base import HAnime, Video
from hanihunter.tui.progressbar import ProgressBar, ProgressModel, ProgressWriter, Status

BODY = b"video-bytes-" * 50
KEY = b"k" * 16


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path == "/video":
            payload = BODY
        elif self.path == "/key":
            payload = KEY
        else:
            self.send_response(404)
            self.send_header("Content-Length", "0")
            self.end_headers()
            return
        self.send_response(200)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, *args):
        pass


@pytest.fixture
def server(monkeypatch):
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


def _encrypt(plain, key, iv):
    padder = padding.PKCS7(128).padder()
    padded = padder.update(plain) + padder.finalize()
    enc = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    return enc.update(padded) + enc.finalize()


class _FakeResponse:
    def __init__(self, status_code, content):
        self.status_code = status_code
        self.content = content

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class _FakeSession:
    def __init__(self, status_code, content):
        self._response = _FakeResponse(status_code, content)
        self.urls = []

    def get(self, url, headers=None, timeout=None, stream=False):
        self.urls.append(url)
        return self._response


@pytest.mark.parametrize(
    "status,expected",
    [
        (Status.DOWNLOADING, "downloading"),
        (Status.MERGING, "merging"),
        (Status.COMPLETE, "complete"),
        (Status.RETRY, "retrying"),
        (Status.ERROR, "error"),
        ("下载中", "downloading"),
        ("something", ""),
    ],
)
def test_normalize_status(status, expected):
    assert normalize_status(status) == expected


@pytest.mark.parametrize("ratio,expected", [(-0.5, 0.0), (0.25, 0.25), (1.5, 1.0), (1.0, 1.0)])
def test_clamp_ratio(ratio, expected):
    assert clamp_ratio(ratio) == expected


def test_format_videos_info():
    videos = [
        Video(id="1", quality="720p", url="u", title="ep1", ext="mp4"),
        Video(id="2", quality="480p", url="u", title="ep1", ext="mp4"),
    ]
    text = format_videos_info(videos)
    assert text.splitlines() == [
        " 标题: ep1, 清晰度: 720p, 格式: mp4",
        " 标题: ep1, 清晰度: 480p, 格式: mp4",
    ]
    assert text.endswith("\n")


def test_create_file_list(tmp_path):
    path = tmp_path / "fileList.txt"
    create_file_list(path, 3)
    assert path.read_text(encoding="utf-8") == "file '0.ts'\nfile '1.ts'\nfile '2.ts'\n"


def test_create_file_list_bad_dir(tmp_path):
    with pytest.raises(DownloadError):
        create_file_list(tmp_path / "missing" / "list.txt", 1)


PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:10
#EXT-X-KEY:METHOD=AES-128,URI="https://example.com/key",IV=0x00000000000000000000000000000001
#EXTINF:10.0,
seg0.ts
#EXTINF:10.0,
https://cdn.example.com/seg1.ts
#EXT-X-ENDLIST
"""


def test_parse_media_playlist():
    playlist = parse_media_playlist(PLAYLIST, "https://example.com/path/index.m3u8")
    assert playlist.segments == [
        "https://example.com/path/seg0.ts",
        "https://cdn.example.com/seg1.ts",
    ]
    assert playlist.key_method == "AES-128"
    assert playlist.key_uri == "https://example.com/key"
    assert playlist.key_iv == "0x00000000000000000000000000000001"


def test_parse_master_playlist_rejected():
    text = "#EXTM3U\n#EXT-X-STREAM-INF:BANDWIDTH=1000\nlow.m3u8\n"
    with pytest.raises(ValueError, match="未找到媒体数据"):
        parse_media_playlist(text)


def test_parse_playlist_without_header():
    with pytest.raises(ValueError):
        parse_media_playlist("seg0.ts\n")


def test_save_ts_decrypts(tmp_path):
    iv = b"i" * 16
    plain = b"segment data that spans more than one block"
    session = _FakeSession(200, _encrypt(plain, KEY, iv))
    path = tmp_path / "0.ts"
    save_ts(session, path, "https://example.com/0.ts", KEY, iv)
    assert path.read_bytes() == plain
    assert session.urls == ["https://example.com/0.ts"]


def test_save_ts_404(tmp_path):
    session = _FakeSession(404, b"")
    with pytest.raises(DownloadError):
        save_ts(session, tmp_path / "0.ts", "https://example.com/0.ts", KEY, KEY)


def test_save_ts_empty_body_writes_nothing(tmp_path):
    path = tmp_path / "0.ts"
    save_ts(_FakeSession(200, b""), path, "https://example.com/0.ts", KEY, KEY)
    assert not path.exists()


def test_get_key_iv_uses_key_as_iv(server):
    key, iv = get_key_iv(MediaPlaylist(key_uri=server + "/key"))
    assert key == KEY
    assert iv == key


def test_get_key_iv_with_playlist_iv(server):
    playlist = MediaPlaylist(key_uri=server + "/key", key_iv="0x0001")
    key, iv = get_key_iv(playlist)
    assert key == KEY
    assert iv == b"0x0001"


def test_get_key_iv_without_key():
    with pytest.raises(DownloadError):
        get_key_iv(MediaPlaylist())


def test_send_status_and_progress_emit_events():
    events = []
    model = ProgressModel()
    model.add(ProgressBar(file_name="a.mp4", writer=ProgressWriter(total=10, file_name="a.mp4")))
    downloader = Downloader(DownloadOption(progress_callback=events.append), send=model.update)

    downloader.send_status("a.mp4", Status.MERGING)
    downloader.send_progress("a.mp4", 2.0)

    assert events == [
        ProgressEvent(file_name="a.mp4", status="merging"),
        ProgressEvent(file_name="a.mp4", ratio=1.0),
    ]
    assert model.bars["a.mp4"].status == Status.MERGING
    assert model.bars["a.mp4"].percent == 2.0


def test_info_only_writes_nothing(tmp_path):
    video = Video(id="1", quality="480p", url="http://127.0.0.1:1/x", title="ep", size=3, ext="mp4")
    anime = HAnime(title="show", videos={"480p": video})
    Downloader(DownloadOption(output_dir=str(tmp_path), info=True)).download(anime)
    assert list(tmp_path.iterdir()) == []


def test_existing_file_is_skipped(tmp_path):
    (tmp_path / "show").mkdir()
    existing = tmp_path / "show" / "ep 480p.mp4"
    existing.write_bytes(b"abc")
    video = Video(id="1", quality="480p", url="http://127.0.0.1:1/x", title="ep", size=3, ext="mp4")
    events = []
    option = DownloadOption(output_dir=str(tmp_path), progress_callback=events.append)
    Downloader(option).download(HAnime(title="show", videos={"480p": video}))
    assert existing.read_bytes() == b"abc"
    assert events == []


def test_existing_m3u8_file_is_skipped(tmp_path):
    (tmp_path / "show").mkdir()
    existing = tmp_path / "show" / "ep 720p.mp4"
    existing.write_bytes(b"partial")
    video = Video(
        id="1", quality="720p", url="http://127.0.0.1:1/x", is_m3u8=True, title="ep", size=99, ext="mp4"
    )
    Downloader(DownloadOption(output_dir=str(tmp_path))).download(
        HAnime(title="show", videos={"720p": video})
    )
    assert existing.read_bytes() == b"partial"


def test_no_videos_raises(tmp_path):
    with pytest.raises(DownloadError):
        Downloader(DownloadOption(output_dir=str(tmp_path))).download(HAnime(title="show"))


def test_single_video_download(server, tmp_path):
    video = Video(id="1", quality="480p", url=server + "/video", title="ep", size=len(BODY), ext="mp4")
    anime = HAnime(title="show", videos={"480p": video})
    events = []
    model = ProgressModel()
    option = DownloadOption(output_dir=str(tmp_path), progress_callback=events.append)

    Downloader(option, send=model.update).download(anime, model)

    assert (tmp_path / "show" / "ep 480p.mp4").read_bytes() == BODY
    assert events[-1] == ProgressEvent(file_name="ep 480p.mp4", status="complete")
    assert model.bars["ep 480p.mp4"].status == Status.COMPLETE
    assert model.bars["ep 480p.mp4"].writer.downloaded == len(BODY)


def test_quality_selection(server, tmp_path):
    high = Video(id="1", quality="720p", url="http://127.0.0.1:1/x", title="ep", size=10_000, ext="mp4")
    low = Video(id="2", quality="480p", url=server + "/video", title="ep", size=len(BODY), ext="mp4")
    anime = HAnime(title="show", videos={"720p": high, "480p": low})
    option = DownloadOption(output_dir=str(tmp_path), quality="480P")
    Downloader(option).download(anime)
    assert (tmp_path / "show" / "ep 480p.mp4").read_bytes() == BODY
    assert not (tmp_path / "show" / "ep 720p.mp4").exists()


def test_failed_download_reports_error(tmp_path):
    video = Video(id="1", quality="480p", url="http://127.0.0.1:1/x", title="ep", size=5, ext="mp4")
    events = []
    option = DownloadOption(output_dir=str(tmp_path), retry=0, progress_callback=events.append)
    with pytest.raises(DownloadError):
        Downloader(option).download(HAnime(title="show", videos={"480p": video}))
    assert events[-1].status == "error"