"""Unit tests for data models."""

from mail_todo_agent.models import (
    MessageSummary,
    Priority,
    TodoItem,
    TodoMeta,
    TodoState,
    ViewState,
)


class TestTodoItem:
    """Test suite for TodoItem model."""

    def test_todo_item_accepts_camel_case_payload(self) -> None:
        """Test that stored camelCase documents validate."""
        item = TodoItem.model_validate(
            {
                "id": "M1-reply-1",
                "sourceKey": "M1",
                "title": "Reply to Anna",
                "priority": "HIGH",
                "sourceHeaderMessageId": "<a@example.com>",
                "doneAt": None,
            }
        )

        assert item.source_key == "M1"
        assert item.priority is Priority.HIGH
        assert item.source_header_message_id == "<a@example.com>"
        assert item.done_at == ""

    def test_unknown_priority_defaults_to_medium(self) -> None:
        """Test that free-form priorities are coerced."""
        item = TodoItem(id="x", source_key="M1", title="Task", priority="urgent!!")

        assert item.priority is Priority.MEDIUM

    def test_numeric_message_id_is_stringified(self) -> None:
        """Test that legacy numeric ids become strings and 0 means absent."""
        assert TodoItem(id="x", source_key="M1", title="T", source_message_id=42).source_message_id == "42"
        assert TodoItem(id="x", source_key="M1", title="T", source_message_id=0).source_message_id == ""

    def test_to_json_dict_uses_camel_case(self) -> None:
        """Test serialization for persistence and the mirror."""
        data = TodoItem(id="x", source_key="M1", title="T").to_json_dict()

        assert data["sourceKey"] == "M1"
        assert data["priority"] == "medium"
        assert data["doneAt"] == ""
        assert "source_key" not in data


class TestTodoState:
    """Test suite for TodoState and its meta."""

    def test_empty_state(self) -> None:
        """Test that a fresh state is empty."""
        state = TodoState()

        assert state.is_empty is True
        assert state.meta.backend_online is None
        assert state.meta.processed_message_keys == []

    def test_meta_tolerates_bad_processed_keys(self) -> None:
        """Test that a non-list processed key set degrades to empty."""
        meta = TodoMeta.model_validate({"processedMessageKeys": "h:abc"})

        assert meta.processed_message_keys == []

    def test_view_state_flag(self) -> None:
        """Test that the view state carries the refreshing flag."""
        view = ViewState(is_refreshing=True)

        assert view.to_json_dict()["isRefreshing"] is True


class TestMessageSummary:
    """Test suite for MessageSummary model."""

    def test_backend_payload_fields(self) -> None:
        """Test that only the documented fields are sent to the backend."""
        summary = MessageSummary(
            source_key="M2",
            message_id="gm-1",
            header_message_id="<b@example.com>",
            subject="Invoice",
            author="Billing <billing@example.com>",
            date="2025-01-01T12:00:00.000Z",
            snippet="Please pay by Monday.",
        )

        assert summary.to_backend_payload() == {
            "sourceKey": "M2",
            "subject": "Invoice",
            "author": "Billing <billing@example.com>",
            "date": "2025-01-01T12:00:00.000Z",
            "snippet": "Please pay by Monday.",
        }
