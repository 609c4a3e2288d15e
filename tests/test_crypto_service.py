import pytest

from double_ai.service.crypto_service import InvalidToken, KeyCipher


def test_ciphertext_does_not_contain_plaintext(cipher):
    token = cipher.encrypt("sk-secret-value")
    assert "sk-secret-value" not in token
    assert cipher.decrypt(token) == "sk-secret-value"


def test_empty_values_pass_through(cipher):
    assert cipher.encrypt("") == ""
    assert cipher.encrypt(None) == ""
    assert cipher.decrypt("") == ""


def test_other_secret_cannot_decrypt(cipher):
    token = cipher.encrypt("sk-secret-value")
    with pytest.raises(InvalidToken):
        KeyCipher("another-secret").decrypt(token)
