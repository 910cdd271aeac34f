"""Tests for change classification."""

from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from entity_history.config import Settings
from entity_history.core.errors import ExtractionError, InvalidPivotActionError
from entity_history.history.classifier import ChangeClassifier, values_equal
from entity_history.history.enums import ChangeType
from entity_history.history.schemas import (
    CollectionDiff,
    EntityReference,
    EnumValue,
    PivotChangeRecord,
    PivotReference,
)
from tests.factories import ItemFactory, ManagerFactory, RoleFactory, UserFactory
from tests.models import Status, UserRole


pytestmark = pytest.mark.unit


@pytest.fixture
def classifier(settings: Settings) -> ChangeClassifier:
    return ChangeClassifier(
        enums={"status": "status"},
        collections=["items"],
        ignored_fields=["updated_at"],
        settings=settings,
    )


@pytest.fixture
def user_role() -> UserRole:
    return UserRole(
        id=uuid4(),
        user=UserFactory.build(email="jane@example.com"),
        role=RoleFactory.build(name="editor"),
        granted_at=datetime(2024, 5, 1, 9, 30, 0, tzinfo=UTC),
        permissions=["read"],
    )


class TestValuesEqual:
    """Tests for semantic equality of raw values."""

    def test_same_instant_in_different_timezones(self):
        """Test datetimes denoting the same instant are equal."""
        utc = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        cet = utc.astimezone(timezone(timedelta(hours=1)))

        assert values_equal(utc, cet)

    def test_boolean_never_equals_integer(self):
        """Test True and 1 are treated as different."""
        assert not values_equal(True, 1)
        assert not values_equal(0, False)

    def test_equal_scalars(self):
        """Test plain equality for scalars."""
        assert values_equal("a", "a")
        assert values_equal(None, None)
        assert not values_equal(None, "")


class TestClassifyChange:
    """Tests for single field classification."""

    def test_scalar_update(self, classifier):
        """Test a plain string change."""
        change = classifier.classify_change("firstname", "John", "Jane")

        assert change is not None
        assert change.field == "firstname"
        assert change.change_type == ChangeType.UPDATE
        assert change.from_ == "John"
        assert change.to == "Jane"

    def test_no_op_yields_nothing(self, classifier):
        """Test equal values are not reported."""
        assert classifier.classify_change("firstname", "John", "John") is None

    def test_same_instant_yields_nothing(self, classifier):
        """Test timezone-only differences are not reported."""
        utc = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        other = utc.astimezone(timezone(timedelta(hours=-5)))

        assert classifier.classify_change("last_login_at", utc, other) is None

    def test_ignored_field_yields_nothing(self, classifier):
        """Test fields on the ignore list are never reported."""
        assert classifier.classify_change("updated_at", 1, 2) is None

    def test_extra_ignored_field_yields_nothing(self, classifier):
        """Test per-call ignore lists are honoured."""
        assert classifier.classify_change("secret", "a", "b", ["secret"]) is None

    def test_settings_ignored_fields_are_merged(self):
        """Test the global ignore list applies to every classifier."""
        settings = Settings(ignored_fields=["version"], _env_file=None)
        classifier = ChangeClassifier(settings=settings)

        assert classifier.classify_change("version", 1, 2) is None

    def test_enum_update(self, classifier):
        """Test enumeration payloads with labels."""
        change = classifier.classify_change("status", "draft", "active")

        assert change.change_type == ChangeType.UPDATE
        assert change.from_ == EnumValue(value="draft", label="status.draft")
        assert change.to == EnumValue(value="active", label="status.active")
        assert change.enum_name == "status"
        assert change.is_enum

    def test_enum_update_with_enum_members(self, classifier):
        """Test Python enum members are rendered by value."""
        change = classifier.classify_change("status", Status.DRAFT, Status.ARCHIVED)

        assert change.from_.label == "status.draft"
        assert change.to.value == "archived"

    def test_enum_update_from_none(self, classifier):
        """Test a missing enum value has no label."""
        change = classifier.classify_change("status", None, "active")

        assert change.from_ == EnumValue(value=None, label=None)
        assert change.from_.type == "enum"

    def test_relation_change(self, classifier):
        """Test assigning a related entity."""
        manager = ManagerFactory.build(name="Alice")

        change = classifier.classify_change("manager", None, manager)

        assert change.change_type == ChangeType.RELATION_CHANGED
        assert change.from_ is None
        assert change.to == EntityReference(id=str(manager.id), label="Alice")
        assert change.related_entity_type == "Manager"

    def test_relation_type_prefers_new_side(self, classifier):
        """Test the related type comes from the new value first."""
        old = ManagerFactory.build()
        new = RoleFactory.build()

        change = classifier.classify_change("owner", old, new)

        assert change.related_entity_type == "Role"
        assert change.from_.id == str(old.id)

    def test_relation_type_from_old_side(self, classifier):
        """Test unsetting a relation keeps the old side's type."""
        old = ManagerFactory.build()

        change = classifier.classify_change("manager", old, None)

        assert change.related_entity_type == "Manager"
        assert change.to is None

    def test_relation_takes_precedence_over_enum(self, classifier):
        """Test entity values are relations even on enumeration fields."""
        manager = ManagerFactory.build()

        change = classifier.classify_change("status", None, manager)

        assert change.change_type == ChangeType.RELATION_CHANGED

    def test_reference_without_label(self, classifier):
        """Test entities that cannot label themselves."""
        item = ItemFactory.build()

        change = classifier.classify_change("item", None, item)

        assert change.to == EntityReference(id=str(item.id), label=None)


class TestRenderScalar:
    """Tests for scalar rendering."""

    def test_booleans(self, classifier):
        """Test booleans render as "1" and ""."""
        change = classifier.classify_change("is_active", True, False)

        assert change.from_ == "1"
        assert change.to == ""

    def test_numbers(self, classifier):
        """Test numerics render as strings."""
        assert classifier.render_scalar(3) == "3"
        assert classifier.render_scalar(2.5) == "2.5"
        assert classifier.render_scalar(Decimal("10.00")) == "10.00"

    def test_datetime(self, classifier):
        """Test datetimes use the configured format."""
        value = datetime(2024, 3, 9, 14, 5, 7)

        assert classifier.render_scalar(value) == "09.03.2024 14:05:07"

    def test_date(self, classifier):
        """Test dates render at midnight."""
        assert classifier.render_scalar(date(2024, 3, 9)) == "09.03.2024 00:00:00"

    def test_custom_date_format(self, settings):
        """Test the date format can be overridden."""
        classifier = ChangeClassifier(date_format="%Y-%m-%d", settings=settings)

        assert classifier.render_scalar(datetime(2024, 3, 9, 1, 2, 3)) == "2024-03-09"

    def test_uuid_and_enum(self, classifier):
        """Test UUIDs and enum members render to strings."""
        value = uuid4()

        assert classifier.render_scalar(value) == str(value)
        assert classifier.render_scalar(Status.ACTIVE) == "active"

    def test_none_and_strings_pass_through(self, classifier):
        """Test None and strings are unchanged."""
        assert classifier.render_scalar(None) is None
        assert classifier.render_scalar("text") == "text"

    def test_containers_render_recursively(self, classifier):
        """Test nested values are rendered to JSON-compatible values."""
        value = {"at": datetime(2024, 1, 2, 3, 4, 5), "ids": (1, 2)}

        assert classifier.render_value(value) == {
            "at": "02.01.2024 03:04:05",
            "ids": [1, 2],
        }


class TestClassifyChangeSet:
    """Tests for change-set classification."""

    def test_preserves_order_and_skips_no_ops(self, classifier):
        """Test iteration order is kept and no-ops are dropped."""
        change_set = {
            "firstname": ("John", "Jane"),
            "lastname": ("Doe", "Doe"),
            "login_count": (1, 2),
        }

        changes = classifier.classify_change_set(change_set)

        assert [c.field for c in changes] == ["firstname", "login_count"]

    def test_unchanged_change_set_is_idempotent(self, classifier):
        """Test classifying an unchanged change-set twice yields nothing."""
        change_set = {"firstname": ("John", "John")}

        assert classifier.classify_change_set(change_set) == []
        assert classifier.classify_change_set(change_set) == []

    def test_accepts_lists_as_pairs(self, classifier):
        """Test [old, new] lists are accepted like tuples."""
        changes = classifier.classify_change_set({"firstname": ["John", "Jane"]})

        assert changes[0].to == "Jane"

    def test_malformed_entry_raises(self, classifier):
        """Test entries that are not pairs are rejected."""
        with pytest.raises(ExtractionError) as exc_info:
            classifier.classify_change_set({"firstname": ("John",)})

        assert exc_info.value.details["field"] == "firstname"

    def test_declared_ignored_fields(self, classifier):
        """Test an entity's own ignore list is applied."""
        user = UserFactory.build()

        changes = classifier.classify_change_set_for(
            user, {"password_hash": ("a", "b"), "name": ("A", "B")}
        )

        assert [c.field for c in changes] == ["name"]


class TestClassifyCollectionDiffs:
    """Tests for collection membership classification."""

    def test_removals_before_additions(self, classifier):
        """Test a diff inserting X and removing Y yields [REMOVED(Y), ADDED(X)]."""
        user = UserFactory.build()
        x = ItemFactory.build()
        y = ItemFactory.build()
        diff = CollectionDiff(owner=user, field="items", inserted=[x], deleted=[y])

        changes = classifier.classify_collection_diffs(user, [diff])

        assert [c.change_type for c in changes] == [
            ChangeType.REMOVED_FROM_COLLECTION,
            ChangeType.ADDED_TO_COLLECTION,
        ]
        assert changes[0].from_.id == str(y.id)
        assert changes[0].to is None
        assert changes[1].from_ is None
        assert changes[1].to.id == str(x.id)
        assert changes[1].related_entity_type == "Item"

    def test_counts_match_diff(self, classifier):
        """Test N insertions and M removals yield M then N records."""
        user = UserFactory.build()
        inserted = ItemFactory.batch(3)
        deleted = ItemFactory.batch(2)
        diff = CollectionDiff(
            owner=user, field="items", inserted=inserted, deleted=deleted
        )

        changes = classifier.classify_collection_diffs(user, [diff])

        types = [c.change_type for c in changes]
        assert types == [ChangeType.REMOVED_FROM_COLLECTION] * 2 + [
            ChangeType.ADDED_TO_COLLECTION
        ] * 3

    def test_other_owner_is_discarded(self, classifier):
        """Test diffs of another instance are ignored."""
        user = UserFactory.build()
        other = UserFactory.build()
        diff = CollectionDiff(
            owner=other, field="items", inserted=[ItemFactory.build()]
        )

        assert classifier.classify_collection_diffs(user, [diff]) == []

    def test_untracked_field_is_discarded(self, classifier):
        """Test diffs of collections that are not tracked are ignored."""
        user = UserFactory.build()
        diff = CollectionDiff(owner=user, field="tags", inserted=[ItemFactory.build()])

        assert classifier.classify_collection_diffs(user, [diff]) == []

    def test_non_entity_items_are_dropped(self, classifier):
        """Test plain values in a collection are ignored."""
        user = UserFactory.build()
        diff = CollectionDiff(owner=user, field="items", inserted=["raw", 42])

        assert classifier.classify_collection_diffs(user, [diff]) == []


class TestClassifyPivotChange:
    """Tests for join-record classification."""

    def test_created_from_owner(self, classifier, user_role):
        """Test the owner perspective of a new join record."""
        change = classifier.classify_pivot_change(user_role, ChangeType.PIVOT_CREATED)

        assert isinstance(change, PivotChangeRecord)
        assert change.field == "role"
        assert change.change_type == ChangeType.PIVOT_CREATED
        assert change.from_ is None
        assert isinstance(change.to, PivotReference)
        assert change.to.id == str(user_role.role.id)
        assert change.to.label == "editor"
        assert change.to.pivot_data == {
            "granted_at": "01.05.2024 09:30:00",
            "permissions": ["read"],
        }
        assert change.related_entity_type == "Role"
        assert change.pivot_entity_type == "UserRole"

    def test_created_from_target(self, classifier, user_role):
        """Test the reverse perspective swaps owner and target."""
        change = classifier.classify_pivot_change_for_target(
            user_role, ChangeType.PIVOT_CREATED
        )

        assert change.field == "user"
        assert change.to.label == "jane@example.com"
        assert change.related_entity_type == "User"

    def test_both_perspectives_share_pivot_data(self, classifier, user_role):
        """Test owner and target records carry the same pivot data."""
        owner = classifier.classify_pivot_change(user_role, "pivot_created")
        target = classifier.classify_pivot_change_for_target(user_role, "pivot_created")

        assert owner.pivot_data == target.pivot_data

    def test_deleted(self, classifier, user_role):
        """Test deletion moves the reference to the old side."""
        change = classifier.classify_pivot_change(user_role, ChangeType.PIVOT_DELETED)

        assert change.to is None
        assert change.from_.id == str(user_role.role.id)

    def test_updated(self, classifier, user_role):
        """Test updates list the changed attributes with their old values."""
        change_set = {"permissions": (["read"], ["read", "write"])}

        change = classifier.classify_pivot_change(
            user_role, ChangeType.PIVOT_UPDATED, change_set
        )

        assert change.from_ == {"permissions": ["read"]}
        assert change.to.id == str(user_role.role.id)

    @pytest.mark.parametrize("action", [ChangeType.UPDATE, "created", "bogus"])
    def test_invalid_action(self, classifier, user_role, action):
        """Test non-pivot change types are rejected."""
        with pytest.raises(InvalidPivotActionError) as exc_info:
            classifier.classify_pivot_change(user_role, action)

        assert "Invalid action type for pivot entity" in exc_info.value.message
