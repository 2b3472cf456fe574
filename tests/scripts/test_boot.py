from unittest.mock import Mock, patch

import psutil
import requests

from scripts.boot.stop import stop_by_pid_file
from scripts.boot.utils import http_ok, read_pid, wait_until_ok


class TestBootUtils:
    """起動スクリプト補助関数のテスト"""

    def test_http_ok(self):
        with patch("requests.get", return_value=Mock(status_code=200)):
            assert http_ok("http://127.0.0.1:5577/status") is True
        with patch("requests.get", return_value=Mock(status_code=503)):
            assert http_ok("http://127.0.0.1:5577/status") is False
        with patch("requests.get", side_effect=requests.ConnectionError()):
            assert http_ok("http://127.0.0.1:5577/status") is False

    def test_http_ok_rejects_non_http_urls(self):
        assert http_ok("file:///etc/passwd") is False

    def test_stop_by_pid_file_terminates_process(self, tmp_path):
        pid_file = tmp_path / "api_server.pid"
        pid_file.write_text("4321", encoding="ascii")
        proc = Mock()
        with patch("psutil.Process", return_value=proc) as mock_process:
            stop_by_pid_file(pid_file)

        mock_process.assert_called_once_with(4321)
        proc.terminate.assert_called_once()
        assert not pid_file.exists()

    def test_stop_by_pid_file_already_gone(self, tmp_path):
        pid_file = tmp_path / "api_server.pid"
        pid_file.write_text("4321", encoding="ascii")
        with patch("psutil.Process", side_effect=psutil.NoSuchProcess(4321)):
            stop_by_pid_file(pid_file)
        assert not pid_file.exists()

    def test_stop_without_pid_file(self, tmp_path):
        stop_by_pid_file(tmp_path / "missing.pid")

    def test_read_pid(self, tmp_path):
        pid_file = tmp_path / "x.pid"
        pid_file.write_text("123\n", encoding="ascii")
        assert read_pid(pid_file) == 123
        pid_file.write_text("garbage", encoding="ascii")
        assert read_pid(pid_file) is None
        assert read_pid(tmp_path / "missing.pid") is None

    def test_wait_until_ok_gives_up(self):
        with patch("scripts.boot.utils.http_ok", return_value=False):
            assert wait_until_ok("http://127.0.0.1:1/status", timeout=0.05, interval=0.01) is False
        with patch("scripts.boot.utils.http_ok", return_value=True):
            assert wait_until_ok("http://127.0.0.1:1/status", timeout=1) is True
