"""Tests for the brand-site registry and stored credentials."""

from __future__ import annotations

import pytest

from oneupdate.core.errors import (
    DuplicateSiteError,
    InvalidCredentialsError,
    UnknownSiteError,
    ValidationError,
)
from oneupdate.core.models import Site, SiteType
from oneupdate.sites import CredentialStore, SiteRegistry
from oneupdate.sites.registry import SHARED_SITES_OPTION


@pytest.fixture
def registry(database):
    return SiteRegistry(database)


def test_sites_are_ordered_by_registration(registry, clock):
    registry.add(Site(name="Zeta", url="https://zeta.example/"))
    clock.advance(seconds=1)
    registry.add(Site(name="Alpha", url="https://alpha.example"))

    sites = registry.sites()

    assert [site.name for site in sites] == ["Zeta", "Alpha"]
    assert sites[0].url == "https://zeta.example"
    assert sites[0].registered_at < sites[1].registered_at


def test_duplicate_url_is_rejected_and_state_unchanged(registry, database):
    registry.add(Site(name="Alpha", url="https://alpha.example"))
    before = database.get_option(SHARED_SITES_OPTION)

    with pytest.raises(DuplicateSiteError) as excinfo:
        registry.add(Site(name="Alpha again", url="HTTPS://ALPHA.example/"))

    assert excinfo.value.code == "duplicate_site_url"
    assert database.get_option(SHARED_SITES_OPTION) == before


def test_duplicate_repository_is_rejected(registry):
    registry.add(Site(name="Alpha", url="https://alpha.example", repo="acme/alpha"))

    with pytest.raises(DuplicateSiteError) as excinfo:
        registry.add(Site(name="Beta", url="https://beta.example", repo="ACME/alpha"))

    assert excinfo.value.code == "duplicate_github_repo"
    assert len(registry.sites()) == 1


def test_lookup_by_url_id_or_name(registry):
    site = registry.add(Site(name="Alpha", url="https://alpha.example"))

    assert registry.get("https://alpha.example/") == site
    assert registry.get(site.id) == site
    assert registry.get("Alpha") == site
    assert registry.get("nobody") is None
    with pytest.raises(UnknownSiteError):
        registry.require("nobody")


def test_update_keeps_identity(registry, clock):
    original = registry.add(Site(name="Alpha", url="https://alpha.example"))
    clock.advance(minutes=5)

    updated = registry.update(
        "Alpha", Site(name="Alpha Prime", url="https://alpha.example", repo="acme/alpha")
    )

    assert updated.id == original.id
    assert updated.registered_at == original.registered_at
    assert registry.require("Alpha Prime").repo == "acme/alpha"


def test_remove_and_unknown_remove(registry):
    registry.add(Site(name="Alpha", url="https://alpha.example"))

    removed = registry.remove("https://alpha.example")

    assert removed.name == "Alpha"
    assert registry.sites() == []
    with pytest.raises(UnknownSiteError):
        registry.remove("https://alpha.example")


def test_replace_all_preserves_registration_time(registry, clock):
    first = registry.add(Site(name="Alpha", url="https://alpha.example"))
    clock.advance(hours=1)

    sites = registry.replace_all(
        [
            {"siteName": "Beta", "siteUrl": "https://beta.example", "publicKey": "k"},
            {"siteName": "Alpha", "siteUrl": "https://alpha.example", "githubRepo": "acme/a"},
        ]
    )

    by_name = {site.name: site for site in sites}
    assert by_name["Alpha"].registered_at == first.registered_at
    assert by_name["Beta"].registered_at > first.registered_at
    assert [site.name for site in registry.sites()] == ["Alpha", "Beta"]


def test_replace_all_with_duplicates_leaves_state_unchanged(registry):
    registry.add(Site(name="Alpha", url="https://alpha.example"))

    with pytest.raises(DuplicateSiteError):
        registry.replace_all(
            [
                {"siteName": "One", "siteUrl": "https://one.example"},
                {"siteName": "Two", "siteUrl": "https://one.example/"},
            ]
        )

    assert [site.name for site in registry.sites()] == ["Alpha"]


def test_site_type_defaults_and_validation(database):
    registry = SiteRegistry(database, default_site_type="brand-site")

    assert registry.site_type() is SiteType.BRAND
    assert registry.is_brand_site()

    registry.set_site_type("governing-site")
    assert registry.is_governing_site()

    with pytest.raises(ValidationError) as excinfo:
        registry.set_site_type("primary")
    assert excinfo.value.code == "invalid_site_type"
    assert registry.is_governing_site()


def test_public_key_is_generated_once(database):
    store = CredentialStore(database)

    key = store.public_key()

    assert len(key) == 128
    assert key.isalnum()
    assert store.public_key() == key
    assert store.verify_token(key)
    assert not store.verify_token("wrong")
    assert not store.verify_token(None)

    rotated = store.regenerate_public_key()
    assert rotated != key
    assert not store.verify_token(key)


def test_github_token_override_wins(database):
    store = CredentialStore(database, github_token_override="ghp_env")
    store.set_github_token("  ghp_stored  ")

    assert store.github_token() == "ghp_env"
    assert CredentialStore(database).github_token() == "ghp_stored"

    with pytest.raises(InvalidCredentialsError):
        store.set_github_token("   ")


def test_s3_credentials_require_every_field(database):
    store = CredentialStore(database)
    complete = {
        "accessKey": "a",
        "bucketName": "b",
        "endpoint": "https://s3.example",
        "region": "eu",
        "secretKey": "s",
    }

    with pytest.raises(InvalidCredentialsError) as excinfo:
        store.set_s3_credentials({**complete, "region": ""})

    assert excinfo.value.data["missing"] == ["region"]
    assert store.s3_credentials() == {}
    assert store.set_s3_credentials(complete) == complete
    assert store.s3_credentials() == complete
