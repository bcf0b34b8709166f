# tests/test_urls.py
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import pytest
from unittest.mock import MagicMock

from filemanager.config import DiskConfig
from filemanager.urls import PUBLIC_URL, SIGNED_ROUTE, TEMPORARY_URL, FileUrlService, UrlSigner


@pytest.fixture
def url_settings(settings):
    disks = dict(settings.DISKS)
    disks["s3"] = DiskConfig(driver="s3", bucket="files")
    disks["minio"] = DiskConfig(driver="local", root=settings.DISKS["local"].root, temporary_url=True)
    return settings.model_copy(update={"DISKS": disks})


@pytest.fixture
def service(url_settings):
    return FileUrlService(url_settings)


# --- UrlSigner ---


def test_signed_url_verifies():
    signer = UrlSigner("secret")
    url = signer.sign("/stream", {"disk": "local", "path": "docs/a b.txt"}, datetime.now(timezone.utc) + timedelta(minutes=5))

    query = parse_qs(urlsplit(url).query)
    assert query["path"] == ["docs/a b.txt"]
    assert "signature" in query and "expires" in query
    assert signer.verify(url) is True


def test_tampered_url_is_rejected():
    signer = UrlSigner("secret")
    url = signer.sign("/stream", {"path": "a.txt"}, datetime.now(timezone.utc) + timedelta(minutes=5))

    assert signer.verify(url.replace("a.txt", "b.txt")) is False
    assert UrlSigner("other").verify(url) is False
    assert signer.verify("/stream?path=a.txt") is False


def test_expired_url_is_rejected():
    signer = UrlSigner("secret")
    expires_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    url = signer.sign("/stream", {"path": "a.txt"}, expires_at)

    assert signer.verify(url, now=expires_at.timestamp() - 1) is True
    assert signer.verify(url, now=expires_at.timestamp() + 1) is False


def test_none_params_are_left_out():
    url = UrlSigner("secret").sign("/d", {"path": "a", "identifier": None}, datetime.now(timezone.utc))

    assert "identifier" not in parse_qs(urlsplit(url).query)


# --- strategy ---


def test_url_strategy(service):
    assert service.get_url_strategy("s3") == TEMPORARY_URL
    assert service.get_url_strategy("minio") == TEMPORARY_URL
    assert service.get_url_strategy("public") == PUBLIC_URL
    assert service.get_url_strategy("local") == SIGNED_ROUTE
    assert service.get_url_strategy("missing") == SIGNED_ROUTE


def test_forced_and_configured_strategies(url_settings):
    forced = FileUrlService(url_settings.model_copy(update={"FORCE_SIGNED_DISKS": ["s3"]}))
    direct = FileUrlService(url_settings.model_copy(update={"URL_STRATEGY": "direct"}))
    signed = FileUrlService(url_settings.model_copy(update={"URL_STRATEGY": "signed_route"}))

    assert forced.get_url_strategy("s3") == SIGNED_ROUTE
    assert direct.get_url_strategy("local") == PUBLIC_URL
    assert signed.get_url_strategy("public") == SIGNED_ROUTE


def test_public_s3_disk_is_publicly_accessible(url_settings):
    disks = dict(url_settings.DISKS)
    disks["cdn"] = DiskConfig(driver="s3", bucket="cdn", visibility="public")
    service = FileUrlService(url_settings.model_copy(update={"DISKS": disks}))

    assert service.get_disk_info("cdn")["is_publicly_accessible"] is True


# --- preview and download URLs ---


def test_preview_url_for_public_disk_is_direct(service):
    assert service.get_preview_url("public", "docs/a.txt") == "/storage/docs/a.txt"


def test_preview_url_for_private_disk_is_signed(service):
    url = service.get_preview_url("local", "docs/a.txt", mode="database", identifier="7")

    assert url.startswith("/filemanager/stream?")
    query = parse_qs(urlsplit(url).query)
    assert query["mode"] == ["database"]
    assert query["identifier"] == ["7"]
    assert service.verify_signed_url(url) is True


def test_preview_url_uses_temporary_url_from_disk(url_settings):
    s3_disk = MagicMock()
    s3_disk.temporary_url.return_value = "https://files.s3/a.txt?X-Amz-Signature=x"
    service = FileUrlService(url_settings, disks={"s3": s3_disk})

    assert service.get_preview_url("s3", "a.txt", expiration_minutes=5) == "https://files.s3/a.txt?X-Amz-Signature=x"
    expires_at = s3_disk.temporary_url.call_args[0][1]
    assert timedelta(minutes=4) < expires_at - datetime.now(timezone.utc) <= timedelta(minutes=5)


def test_preview_url_falls_back_to_signed_route(url_settings):
    s3_disk = MagicMock()
    s3_disk.temporary_url.side_effect = RuntimeError("no credentials")
    service = FileUrlService(url_settings, disks={"s3": s3_disk})

    assert service.get_preview_url("s3", "a.txt").startswith("/filemanager/stream?")


def test_preview_url_for_unknown_disk_is_none(service):
    assert service.get_preview_url("missing", "a.txt") is None


def test_download_url_is_always_signed(service):
    url = service.get_download_url("public", "docs/a.txt", filename="report.txt")

    assert url.startswith("/filemanager/download?")
    assert parse_qs(urlsplit(url).query)["filename"] == ["report.txt"]
    assert service.verify_signed_url(url) is True


# --- disk info ---


def test_requires_authentication(url_settings):
    service = FileUrlService(url_settings.model_copy(update={"PUBLIC_ACCESS_DISKS": ["public"]}))

    assert service.requires_authentication("public") is False
    assert service.requires_authentication("local") is True


def test_disk_info(service):
    assert service.get_disk_info("missing") == {
        "exists": False,
        "strategy": "unknown",
        "driver": None,
        "requires_auth": True,
    }
    info = service.get_disk_info("s3")
    assert info["exists"] is True
    assert info["strategy"] == TEMPORARY_URL
    assert info["driver"] == "s3"
    assert info["supports_temporary_urls"] is True
