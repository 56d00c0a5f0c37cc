"""
Tests for the Firebase Realtime Database wrapper.
"""

from unittest.mock import MagicMock, patch

import pytest

from database.firebase_service import FirebaseService
from utils.errors import StorageError, ValidationError


@pytest.fixture
def firebase():
    service = FirebaseService(database_url="https://example.firebaseio.com")
    service.app = MagicMock()
    return service


class TestPaths:

    @pytest.mark.asyncio
    async def test_illegal_characters_raise_validation_error(self, firebase):
        error = ValueError('Invalid path: "conversations/conv.1/metadata". Path contains illegal characters.')
        with patch("database.firebase_service.db.reference", side_effect=error) as reference:
            with pytest.raises(ValidationError) as exc_info:
                await firebase.get_data(firebase.get_conversation_path("conv.1", "metadata"))

        assert reference.call_count == 1
        assert exc_info.value.__cause__ is error

    @pytest.mark.asyncio
    async def test_uninitialized_service_raises_storage_error(self):
        with pytest.raises(StorageError):
            await FirebaseService().get_data("conversations/c1")

    @pytest.mark.asyncio
    async def test_get_data_reads_reference(self, firebase):
        ref = MagicMock()
        ref.get.return_value = {"status": "active"}
        with patch("database.firebase_service.db.reference", return_value=ref) as reference:
            value = await firebase.get_data("conversations/c1/metadata")

        assert value == {"status": "active"}
        reference.assert_called_once_with("conversations/c1/metadata", app=firebase.app)
        ref.get.assert_called_once_with(shallow=False)
