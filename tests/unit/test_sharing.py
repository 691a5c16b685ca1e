"""Tests for public identifiers and their resolution."""

import pytest

from progress_tracker.errors import NotFound
from progress_tracker.sharing import (
    MIN_PUBLIC_ID_LENGTH,
    PUBLIC_ID_ALPHABET,
    PublicSharingResolver,
    generate_public_id,
    is_well_formed,
)
from progress_tracker.store.base import Collection


class TestGeneratePublicId:
    def test_default_length_and_alphabet(self):
        public_id = generate_public_id()

        assert len(public_id) >= MIN_PUBLIC_ID_LENGTH
        assert set(public_id) <= set(PUBLIC_ID_ALPHABET)
        assert is_well_formed(public_id)

    def test_alphabet_has_at_least_36_symbols(self):
        assert len(set(PUBLIC_ID_ALPHABET)) >= 36  # noqa: PLR2004

    def test_rejects_short_ids(self):
        with pytest.raises(ValueError):
            generate_public_id(MIN_PUBLIC_ID_LENGTH - 1)

    def test_ids_do_not_repeat(self):
        ids = {generate_public_id() for _ in range(500)}
        assert len(ids) == 500  # noqa: PLR2004


class TestIsWellFormed:
    @pytest.mark.parametrize(
        "public_id",
        ["", "short", "UPPERCASE000000000000000", "has space 00000000000000", "../../etc/passwd"],
    )
    def test_malformed(self, public_id):
        assert not is_well_formed(public_id)


class TestPublicSharingResolver:
    @pytest.mark.asyncio
    async def test_resolves_existing_project(self, store):
        project = await store.create(
            Collection.PROJECTS,
            {"name": "Site", "ownerId": "owner-a", "publicId": "abcdefghij0123456789klmn"},
        )
        resolver = PublicSharingResolver(store)

        resolved = await resolver.resolve("abcdefghij0123456789klmn")

        assert resolved.id == project.id

    @pytest.mark.asyncio
    async def test_unknown_id_is_not_found(self, store):
        resolver = PublicSharingResolver(store)

        with pytest.raises(NotFound):
            await resolver.resolve("abcdefghij0123456789zzzz")

    @pytest.mark.asyncio
    async def test_malformed_id_is_not_found_without_lookup(self, store):
        store.set_unavailable()
        resolver = PublicSharingResolver(store)

        # A lookup would raise StoreUnavailable; malformed ids never reach the store
        with pytest.raises(NotFound):
            await resolver.resolve("not a public id")

    @pytest.mark.asyncio
    async def test_does_not_resolve_by_record_id(self, store):
        project = await store.create(
            Collection.PROJECTS,
            {"name": "Site", "ownerId": "owner-a", "publicId": "abcdefghij0123456789klmn"},
        )
        resolver = PublicSharingResolver(store)

        with pytest.raises(NotFound):
            await resolver.resolve(project.id)
