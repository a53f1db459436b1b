"""Tests for KeyStore loading and rotation."""

from __future__ import annotations

import os

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from identity.keys import KeyStore, KeyStoreError, key_id
from identity.models import TokenKind
from identity.settings import AuthSettings
from identity.tokens import KeyRole, TokenCodec


def _settings(tmp_path, **overrides) -> AuthSettings:
    return AuthSettings(database_path=str(tmp_path / "users.db"), **overrides)


def _write_pair(directory, name, key, pem, *, pkcs1=False):
    (directory / f"{name}.key").write_bytes(pem.private(key, pkcs1=pkcs1))
    (directory / f"{name}.key.pub").write_bytes(pem.public(key))


class TestSinglePair:
    def test_loads_pkcs8_pair(self, auth_settings, first_party_key, federated_key):
        keys = KeyStore.load(auth_settings)

        assert keys.signing_kid == key_id(first_party_key.public_key())
        assert list(keys.first_party_keys) == [keys.signing_kid]
        assert keys.public_key.public_numbers() == first_party_key.public_key().public_numbers()
        assert keys.federated_key.public_numbers() == federated_key.public_key().public_numbers()

    def test_loads_pkcs1_private_key(self, tmp_path, key_files, first_party_key, pem):
        key_files["private"].write_bytes(pem.private(first_party_key, pkcs1=True))
        settings = _settings(
            tmp_path,
            jwt_private_key_path=str(key_files["private"]),
            jwt_public_key_path=str(key_files["public"]),
            auth0_public_key_path=str(key_files["federated"]),
        )

        keys = KeyStore.load(settings)

        assert keys.signing_kid == key_id(first_party_key.public_key())

    def test_rejects_mismatched_public_key(self, tmp_path, key_files):
        settings = _settings(
            tmp_path,
            jwt_private_key_path=str(key_files["private"]),
            jwt_public_key_path=str(key_files["federated"]),
            auth0_public_key_path=str(key_files["federated"]),
        )

        with pytest.raises(KeyStoreError, match="does not match"):
            KeyStore.load(settings)

    def test_rejects_missing_file(self, tmp_path, key_files):
        settings = _settings(
            tmp_path,
            jwt_private_key_path=str(tmp_path / "missing.key"),
            jwt_public_key_path=str(key_files["public"]),
            auth0_public_key_path=str(key_files["federated"]),
        )

        with pytest.raises(KeyStoreError, match="Cannot read"):
            KeyStore.load(settings)

    def test_rejects_malformed_pem(self, tmp_path, key_files):
        key_files["federated"].write_text("-----BEGIN PUBLIC KEY-----\nnot a key\n-----END PUBLIC KEY-----\n")
        settings = _settings(
            tmp_path,
            jwt_private_key_path=str(key_files["private"]),
            jwt_public_key_path=str(key_files["public"]),
            auth0_public_key_path=str(key_files["federated"]),
        )

        with pytest.raises(KeyStoreError, match="Malformed"):
            KeyStore.load(settings)

    def test_rejects_non_rsa_key(self, tmp_path, key_files):
        ec_key = ec.generate_private_key(ec.SECP256R1())
        key_files["private"].write_bytes(
            ec_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ),
        )
        settings = _settings(
            tmp_path,
            jwt_private_key_path=str(key_files["private"]),
            jwt_public_key_path=str(key_files["public"]),
            auth0_public_key_path=str(key_files["federated"]),
        )

        with pytest.raises(KeyStoreError, match="not an RSA key"):
            KeyStore.load(settings)


class TestKeyDirectory:
    def test_newest_pair_signs_and_all_verify(self, tmp_path, key_files, first_party_key, pem):
        key_dir = tmp_path / "rotation"
        key_dir.mkdir()
        newer = pem.generate()
        _write_pair(key_dir, "2024", first_party_key, pem)
        _write_pair(key_dir, "2025", newer, pem)
        os.utime(key_dir / "2024.key", (1_000_000, 1_000_000))
        os.utime(key_dir / "2025.key", (2_000_000, 2_000_000))

        keys = KeyStore.load(
            _settings(tmp_path, jwt_keys_dir=str(key_dir), auth0_public_key_path=str(key_files["federated"])),
        )

        assert keys.signing_kid == key_id(newer.public_key())
        assert set(keys.first_party_keys) == {key_id(first_party_key.public_key()), key_id(newer.public_key())}

    def test_retired_key_tokens_still_verify(self, tmp_path, auth_settings, key_files, first_party_key, pem):
        old_codec = TokenCodec(KeyStore.load(auth_settings), auth_settings)
        token = old_codec.mint(TokenKind.ACCESS, "user-1", roles="SIGNIN")

        key_dir = tmp_path / "rotation"
        key_dir.mkdir()
        _write_pair(key_dir, "old", first_party_key, pem)
        _write_pair(key_dir, "new", pem.generate(), pem)
        os.utime(key_dir / "old.key", (1_000_000, 1_000_000))
        rotated_settings = _settings(
            tmp_path,
            jwt_keys_dir=str(key_dir),
            auth0_public_key_path=str(key_files["federated"]),
        )
        rotated = TokenCodec(KeyStore.load(rotated_settings), rotated_settings)

        claims = rotated.verify(token, KeyRole.FIRST_PARTY)

        assert claims.user_id == "user-1"

    def test_rejects_empty_directory(self, tmp_path, key_files):
        key_dir = tmp_path / "empty"
        key_dir.mkdir()

        with pytest.raises(KeyStoreError, match="No"):
            KeyStore.load(
                _settings(tmp_path, jwt_keys_dir=str(key_dir), auth0_public_key_path=str(key_files["federated"])),
            )

    def test_rejects_private_key_without_public_sibling(self, tmp_path, key_files, first_party_key, pem):
        key_dir = tmp_path / "rotation"
        key_dir.mkdir()
        (key_dir / "lonely.key").write_bytes(pem.private(first_party_key))

        with pytest.raises(KeyStoreError, match="Cannot read"):
            KeyStore.load(
                _settings(tmp_path, jwt_keys_dir=str(key_dir), auth0_public_key_path=str(key_files["federated"])),
            )
