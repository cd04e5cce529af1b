"""Tests for core.network module."""
import socket
from contextlib import closing
from unittest.mock import patch

import pytest

from core.network import PortManager, validate_port


class TestValidatePort:
    def test_valid_integer(self):
        assert validate_port(8080) == 8080
        assert validate_port(1) == 1
        assert validate_port(65535) == 65535

    def test_valid_string(self):
        assert validate_port("8080") == 8080

    def test_invalid_range(self):
        assert validate_port(0) is None
        assert validate_port(-1) is None
        assert validate_port(65536) is None

    def test_invalid_type(self):
        assert validate_port(None) is None
        assert validate_port("not-a-port") is None
        assert validate_port([8080]) is None
        assert validate_port(True) is None

    def test_float(self):
        assert validate_port(8080.0) == 8080
        assert validate_port(8080.5) is None


class TestPortManager:
    def test_host_port(self):
        pm = PortManager(base_port=8080)
        assert pm.host_port(0) == 8080
        assert pm.host_port(7) == 8087

    def test_find_free_index_skips_busy(self):
        pm = PortManager(base_port=8000)
        with patch.object(pm, "is_port_open", side_effect=lambda host, port: port < 8003):
            assert pm.find_free_index(1) == 3

    def test_find_free_index_exhausted(self):
        pm = PortManager(base_port=65530)
        with patch.object(pm, "is_port_open", return_value=True):
            with pytest.raises(RuntimeError, match="No free ports available"):
                pm.find_free_index(0)

    def test_is_port_open_detects_listener(self):
        with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as server:
            server.bind(("127.0.0.1", 0))
            server.listen(1)
            port = server.getsockname()[1]
            assert PortManager().is_port_open("127.0.0.1", port)

    def test_is_port_open_invalid_port(self):
        assert not PortManager().is_port_open("localhost", 99999)
