"""
Unit Tests for Social Task Completion

Tests cover:
1. Seeding the weekly tasks
2. Completion credit and auto-generated post
3. One completion per member per task
"""

from decimal import Decimal

import pytest

from points.errors import AlreadyCompletedError, NotFoundError, ValidationError
from points.models import LedgerEntryType, PostType
from points.storage import DuplicateKeyError
from points.tasks import SOCIAL_POSTS, SOCIAL_TASKS, TASK_COMPLETIONS


PHOTO = "https://cdn.example.org/photos/sapling.jpg"


@pytest.fixture
def tasks(services):
    services.tasks.seed_default_tasks()
    return services.tasks


class TestSeedTasks:
    def test_seed_is_idempotent(self, services):
        assert services.tasks.seed_default_tasks() == 10
        assert services.tasks.seed_default_tasks() == 0
        assert services.storage.count(SOCIAL_TASKS) == 10

    def test_list_tasks_marks_completed(self, tasks, make_member):
        member = make_member()
        tasks.complete(member.id, "TASK-W03", PHOTO)

        listing = tasks.list_tasks(member.id)

        assert [item.task.week_number for item in listing] == list(range(1, 11))
        assert [item.task.task_id for item in listing if item.completed] == ["TASK-W03"]


class TestCompleteTask:
    """Tests for completing a task."""

    def test_completion_credits_points(self, services, tasks, make_member):
        member = make_member()

        result = tasks.complete(
            member.id, "TASK-W01", PHOTO, latitude=28.61, longitude=77.2, location_address="New Delhi"
        )

        wallet = services.wallet.get_wallet(member.id)
        assert result.points == Decimal("10")
        assert wallet.points_from_social_tasks == Decimal("10")
        assert wallet.points_balance == Decimal("10")

        entry = services.wallet.points_history(member.id)[0]
        assert entry.type == LedgerEntryType.SOCIAL_TASK
        assert entry.reference_id == result.completion.id

    def test_completion_creates_linked_post(self, tasks, make_member):
        member = make_member()

        result = tasks.complete(member.id, "TASK-W01", PHOTO, location_address="Pune")

        assert result.post.post_type == PostType.TASK_COMPLETION
        assert result.post.is_auto_generated
        assert result.post.images == [PHOTO]
        assert result.post.location.address == "Pune"
        assert result.post.task_completion_id == result.completion.id
        assert result.completion.social_post_id == result.post.id

    def test_second_completion_is_rejected(self, services, tasks, make_member):
        member = make_member()
        tasks.complete(member.id, "TASK-W01", PHOTO)
        before = services.wallet.get_wallet(member.id)

        with pytest.raises(AlreadyCompletedError):
            tasks.complete(member.id, "TASK-W01", PHOTO)

        after = services.wallet.get_wallet(member.id)
        assert after.points_balance == before.points_balance
        assert services.storage.count(TASK_COMPLETIONS) == 1
        assert services.storage.count(SOCIAL_POSTS) == 1

    def test_other_members_can_complete_same_task(self, tasks, make_member):
        first = make_member()
        second = make_member()

        tasks.complete(first.id, "TASK-W02", PHOTO)
        result = tasks.complete(second.id, "TASK-W02", PHOTO)

        assert result.points == Decimal("10")

    def test_photo_required(self, tasks, make_member):
        member = make_member()

        with pytest.raises(ValidationError):
            tasks.complete(member.id, "TASK-W01", None)

    def test_unknown_task(self, tasks, make_member):
        member = make_member()

        with pytest.raises(NotFoundError):
            tasks.complete(member.id, "TASK-W99", PHOTO)

    def test_inactive_task(self, services, tasks, make_member):
        member = make_member()
        services.storage.update_one(SOCIAL_TASKS, {"task_id": "TASK-W04"}, set={"is_active": False})

        with pytest.raises(NotFoundError):
            tasks.complete(member.id, "TASK-W04", PHOTO)

    def test_unique_index_backs_the_check(self, services, tasks, make_member):
        """A racing insert that slips past the pre-check still hits the index."""
        member = make_member()
        tasks.complete(member.id, "TASK-W01", PHOTO)

        with pytest.raises(DuplicateKeyError):
            services.storage.insert(TASK_COMPLETIONS, {"user_id": member.id, "task_id": "TASK-W01"})

    def test_racing_completion_is_already_completed(self, services, tasks, make_member, monkeypatch):
        member = make_member()
        tasks.complete(member.id, "TASK-W01", PHOTO)
        before = services.wallet.get_wallet(member.id)
        real_count = services.storage.count

        def count(collection, query=None):
            return 0 if collection == TASK_COMPLETIONS else real_count(collection, query)

        monkeypatch.setattr(services.storage, "count", count)

        with pytest.raises(AlreadyCompletedError):
            tasks.complete(member.id, "TASK-W01", PHOTO)

        monkeypatch.undo()
        assert services.wallet.get_wallet(member.id).points_balance == before.points_balance
        assert services.storage.count(TASK_COMPLETIONS) == 1
        assert services.storage.count(SOCIAL_POSTS) == 1
