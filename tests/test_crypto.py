"""Tests for passphrase encryption."""

import pytest

from sandcoder.errors import DecryptionError
from sandcoder.services.crypto import MAGIC, SALT_SIZE, PassphraseCipher


@pytest.fixture
def cipher():
    return PassphraseCipher("passphrase", iterations=1_000)


class TestPassphraseCipher:
    """Tests for PassphraseCipher."""

    def test_round_trip(self, cipher):
        """Test encrypt then decrypt."""
        assert cipher.decrypt(cipher.encrypt(b'{"id": "conv"}')) == b'{"id": "conv"}'

    def test_format(self, cipher):
        """Test the magic prefix and salt layout."""
        data = cipher.encrypt(b"hello")
        assert data.startswith(MAGIC)
        assert len(data) > len(MAGIC) + SALT_SIZE
        assert b"hello" not in data

    def test_fresh_salt_each_time(self, cipher):
        """Test that equal plaintexts encrypt differently."""
        assert cipher.encrypt(b"same") != cipher.encrypt(b"same")

    def test_wrong_passphrase(self, cipher):
        """Test that another passphrase cannot decrypt."""
        data = cipher.encrypt(b"hello")
        with pytest.raises(DecryptionError, match="wrong passphrase"):
            PassphraseCipher("other", iterations=1_000).decrypt(data)

    def test_tampered_data(self, cipher):
        """Test that a flipped byte is detected."""
        data = bytearray(cipher.encrypt(b"hello"))
        data[-5] ^= 0x01
        with pytest.raises(DecryptionError):
            cipher.decrypt(bytes(data))

    def test_plaintext_is_not_accepted(self, cipher):
        """Test that unencrypted input is rejected by format."""
        with pytest.raises(DecryptionError, match="format"):
            cipher.decrypt(b'{"id": "conv"}')

    def test_empty_passphrase(self):
        """Test that an empty passphrase is refused."""
        with pytest.raises(ValueError):
            PassphraseCipher("")
