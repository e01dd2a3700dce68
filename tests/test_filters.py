"""Tests for the stateless item filters."""

from workspace_triggers.config import FilterConfig
from workspace_triggers.filters import ItemFilter
from workspace_triggers.models import CandidateItem


def make_item(item_id="1", **fields) -> CandidateItem:
    return CandidateItem(item_id=item_id, ordering_key="2026-03-01T10:00:00.000Z", fields=fields)


class TestItemFilter:
    """Tests for filter conjunction."""

    def test_no_filters_matches_everything(self) -> None:
        item_filter = ItemFilter(FilterConfig())

        assert len(item_filter) == 0
        assert item_filter.matches(make_item())

    def test_keyword_is_case_sensitive_substring(self) -> None:
        item_filter = ItemFilter(FilterConfig(keyword="Invoice"))

        assert item_filter.matches(make_item(text="New Invoice #42"))
        assert not item_filter.matches(make_item(text="new invoice #42"))

    def test_sender_ignores_case(self) -> None:
        item_filter = ItemFilter(FilterConfig(sender="Billing@Example.com"))

        assert item_filter.matches(make_item(sender="billing@example.COM"))
        assert not item_filter.matches(make_item(sender="sales@example.com"))
        assert not item_filter.matches(make_item())

    def test_status_is_exact(self) -> None:
        item_filter = ItemFilter(FilterConfig(status="confirmed"))

        assert item_filter.matches(make_item(status="confirmed"))
        assert not item_filter.matches(make_item(status="Confirmed"))

    def test_labels_require_all(self) -> None:
        item_filter = ItemFilter(FilterConfig(labels=["INBOX", "IMPORTANT"]))

        assert item_filter.matches(make_item(labels=["INBOX", "IMPORTANT", "UNREAD"]))
        assert not item_filter.matches(make_item(labels=["INBOX"]))

    def test_exclude_labels(self) -> None:
        item_filter = ItemFilter(FilterConfig(exclude_labels=["SPAM"]))

        assert item_filter.matches(make_item(labels=["INBOX"]))
        assert not item_filter.matches(make_item(labels=["INBOX", "SPAM"]))

    def test_query_is_not_evaluated(self) -> None:
        """Test that the provider-native query never filters locally."""
        item_filter = ItemFilter(FilterConfig(query="from:nobody@example.com"))

        assert len(item_filter) == 0
        assert item_filter.matches(make_item(sender="someone@example.com"))

    def test_conjunction_equals_intersection(self) -> None:
        """Test that combined filters match exactly the items every single filter matches."""
        items = [
            make_item("1", text="Invoice", sender="a@example.com", labels=["INBOX"]),
            make_item("2", text="Invoice", sender="b@example.com", labels=["INBOX"]),
            make_item("3", text="Receipt", sender="a@example.com", labels=["INBOX"]),
            make_item("4", text="Invoice", sender="a@example.com", labels=["INBOX", "SPAM"]),
        ]
        configs = [
            FilterConfig(keyword="Invoice"),
            FilterConfig(sender="a@example.com"),
            FilterConfig(exclude_labels=["SPAM"]),
        ]
        combined = ItemFilter(
            FilterConfig(keyword="Invoice", sender="a@example.com", exclude_labels=["SPAM"])
        )

        expected = [
            item for item in items if all(ItemFilter(config).matches(item) for config in configs)
        ]

        assert combined.apply(items) == expected
        assert [item.item_id for item in expected] == ["1"]
