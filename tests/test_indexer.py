"""
Tests for need re-indexing, context cards and location geocoding.
"""

from unittest.mock import MagicMock, patch

import pytest

from linksy.search.indexer import (
    build_address_string,
    build_context_card,
    generate_context_cards,
    geocode_locations,
    reindex_needs,
)


def _provider(**overrides):
    provider = {
        "id": "p-1",
        "name": "Rent Relief Network",
        "sector": "faith_based",
        "phone": "904-555-0100",
        "email": None,
        "website": "https://rent.example.org",
        "hours": None,
        "referral_type": "standard",
        "referral_instructions": None,
        "description": "Emergency rent grants.",
        "provider_needs": [{"need_id": "n-1", "need": {"id": "n-1", "name": "Rent Assistance"}}],
        "locations": [{
            "id": "l-1", "is_primary": True, "address_line1": "1 King St",
            "city": "St. Augustine", "state": "FL", "postal_code": "32084",
        }],
    }
    provider.update(overrides)
    return provider


class TestBuildContextCard:
    def test_full_card(self):
        card = build_context_card(_provider())
        assert card.splitlines() == [
            "## Rent Relief Network",
            "**Type:** Faith-based",
            "**Services:** Rent Assistance",
            "**Location:** 1 King St, St. Augustine, FL, 32084",
            "**Phone:** 904-555-0100",
            "**Website:** https://rent.example.org",
            "**Referral:** Standard (no prior contact required)",
            "",
            "Emergency rent grants.",
        ]

    def test_contact_directly(self):
        card = build_context_card(_provider(
            referral_type="contact_directly",
            referral_instructions="Call before visiting",
        ))
        assert "**Referral:** Contact directly: Call before visiting" in card

    def test_minimal_provider(self):
        card = build_context_card(_provider(
            phone=None, website=None, description=None, provider_needs=[], locations=[],
        ))
        assert card == "## Rent Relief Network\n**Type:** Faith-based\n**Referral:** Standard (no prior contact required)"


class TestReindexNeeds:
    @patch("linksy.search.indexer.settings")
    @patch("linksy.search.indexer.embed_texts")
    @patch("linksy.search.indexer.dal")
    def test_batches_and_counts(self, mock_dal, mock_embed, mock_settings):
        mock_settings.EMBEDDING_BATCH_SIZE = 2
        mock_dal.get_needs_for_indexing.return_value = [
            {"id": str(i), "name": f"Need {i}", "synonyms": []} for i in range(3)
        ]
        mock_embed.side_effect = lambda texts, client: [[0.1]] * len(texts)
        mock_dal.save_need_embeddings.side_effect = lambda pairs, db: len(pairs)

        result = reindex_needs(MagicMock(), MagicMock())

        assert result == {"total": 3, "succeeded": 3, "failed": 0}
        assert mock_embed.call_count == 2
        assert mock_embed.call_args_list[0].args[0] == ["Need 0", "Need 1"]

    @patch("linksy.search.indexer.settings")
    @patch("linksy.search.indexer.embed_texts")
    @patch("linksy.search.indexer.dal")
    def test_failed_batch_counted(self, mock_dal, mock_embed, mock_settings):
        mock_settings.EMBEDDING_BATCH_SIZE = 2
        mock_dal.get_needs_for_indexing.return_value = [
            {"id": str(i), "name": f"Need {i}", "synonyms": []} for i in range(3)
        ]
        mock_embed.side_effect = lambda texts, client: [[0.1]] * len(texts)
        mock_dal.save_need_embeddings.side_effect = [RuntimeError("db down"), 1]

        result = reindex_needs(MagicMock(), MagicMock(), force=True)

        assert result == {"total": 3, "succeeded": 1, "failed": 2}
        assert mock_dal.get_needs_for_indexing.call_args.kwargs["force"] is True


class TestGenerateContextCards:
    @patch("linksy.search.indexer.dal")
    def test_one_failure_does_not_stop_batch(self, mock_dal):
        mock_dal.get_providers_for_context_cards.return_value = [_provider(id="a"), _provider(id="b")]
        mock_dal.save_context_card.side_effect = [RuntimeError("db down"), 1]

        assert generate_context_cards(MagicMock()) == {"updated": 1, "total": 2}


class TestGeocodeLocations:
    def test_address_string(self):
        assert build_address_string({"address_line1": "1 King St", "city": "St. Augustine", "state": "FL"}) == (
            "1 King St, St. Augustine, FL"
        )
        assert build_address_string({}) is None

    @patch("linksy.search.indexer.geocode_address_sync")
    @patch("linksy.search.indexer.dal")
    def test_counts(self, mock_dal, mock_geocode):
        mock_dal.get_ungeocoded_locations.return_value = [
            {"id": "l-1", "address_line1": "1 King St", "city": "St. Augustine"},
            {"id": "l-2", "address_line1": "Nowhere"},
        ]
        mock_geocode.side_effect = [{"lat": 29.89, "lng": -81.31}, None]
        mock_dal.save_location_coordinates.return_value = 1

        result = geocode_locations(MagicMock(), delay_seconds=0)

        assert result == {"total": 2, "geocoded": 1, "failed": 1}
        mock_dal.save_location_coordinates.assert_called_once()
        assert mock_dal.save_location_coordinates.call_args.args == ("l-1", 29.89, -81.31)
