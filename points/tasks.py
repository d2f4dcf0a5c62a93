"""
Weekly social tasks.

A member completes each task at most once, ever, by submitting a photo.
Completion creates an auto-generated social post and credits the task's
points reward.
"""

from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

from loguru import logger

from .config import Settings, settings
from .errors import AlreadyCompletedError, NotFoundError, ValidationError
from .models import (
    PointsSource,
    PostType,
    SocialPost,
    SocialTask,
    TaskCompletion,
    TaskCompletionResult,
    TaskListItem,
)
from .otp import utcnow
from .storage import DuplicateKeyError, InMemoryStorage
from .wallet import WalletService

SOCIAL_TASKS = "social_tasks"
TASK_COMPLETIONS = "task_completions"
SOCIAL_POSTS = "social_posts"

# (week, title, description, photo instruction, icon)
DEFAULT_TASKS = [
    (1, "Plant a Sapling", "Plant a tree sapling in your neighbourhood.",
     "Photo of you with the planted sapling", "🌱"),
    (2, "Feed the Hungry", "Share a meal with someone in need.",
     "Photo of the meal being served", "🍲"),
    (3, "Clean-up Drive", "Clean a public space near you.",
     "Before and after photo of the area", "🧹"),
    (4, "Teach a Child", "Spend an hour teaching a child to read or count.",
     "Photo of the teaching session", "📚"),
    (5, "Water for Birds", "Place a water bowl for birds and animals.",
     "Photo of the water bowl in place", "🐦"),
    (6, "Donate Clothes", "Donate clothes you no longer wear.",
     "Photo of the clothes being handed over", "👕"),
    (7, "Visit the Elderly", "Spend time with senior citizens.",
     "Photo from the visit", "👵"),
    (8, "Awareness Poster", "Put up an awareness poster on health or hygiene.",
     "Photo of the poster on display", "📢"),
    (9, "Blood Donation Drive", "Donate blood or help run a donation camp.",
     "Photo at the camp", "🩸"),
    (10, "Save Water", "Fix a leaking tap or set up rainwater harvesting.",
     "Photo of the fix or setup", "💧"),
]


class SocialTaskService:
    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        config: Optional[Settings] = None,
        wallet: Optional[WalletService] = None,
        clock: Callable = utcnow,
    ):
        self.storage = storage or InMemoryStorage()
        self.config = config or settings
        self.wallet = wallet or WalletService(self.storage, self.config)
        self.clock = clock

    def seed_default_tasks(self) -> int:
        created = 0
        for week, title, description, instruction, icon in DEFAULT_TASKS:
            task_id = f"TASK-W{week:02d}"
            if self.storage.count(SOCIAL_TASKS, {"task_id": task_id}):
                continue
            self.storage.insert(SOCIAL_TASKS, {
                "task_id": task_id,
                "week_number": week,
                "title": title,
                "description": description,
                "photo_instruction": instruction,
                "icon": icon,
                "points_reward": Decimal("10"),
                "is_active": True,
            })
            created += 1
        if created:
            logger.info(f"Seeded {created} social tasks")
        return created

    def get_task(self, task_id: str) -> SocialTask:
        data = self.storage.find_one(SOCIAL_TASKS, {"task_id": task_id, "is_active": True})
        if not data:
            raise NotFoundError("Task not found or inactive")
        return SocialTask(**data)

    def list_tasks(self, user_id: UUID) -> list[TaskListItem]:
        done = {c["task_id"] for c in self.storage.find(TASK_COMPLETIONS, {"user_id": user_id})}
        tasks = self.storage.find(SOCIAL_TASKS, {"is_active": True}, sort=[("week_number", 1)])
        return [TaskListItem(task=SocialTask(**t), completed=t["task_id"] in done) for t in tasks]

    def complete(
        self,
        user_id: UUID,
        task_id: str,
        photo_url: Optional[str],
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        location_address: Optional[str] = None,
    ) -> TaskCompletionResult:
        if not task_id:
            raise ValidationError("task_id required")
        if not photo_url:
            raise ValidationError("Photo is required to complete a task")

        task = self.get_task(task_id)
        with self.storage.transaction():
            user = self.wallet.get_user(user_id)
            if self.storage.count(TASK_COMPLETIONS, {"user_id": user_id, "task_id": task_id}):
                raise AlreadyCompletedError("Task already completed")

            now = self.clock()
            location = None
            if latitude is not None or longitude is not None or location_address:
                location = {"latitude": latitude, "longitude": longitude, "address": location_address}
            post = self.storage.insert(SOCIAL_POSTS, {
                "user_id": user_id,
                "member_id": user.member_id,
                "user_name": user.name,
                "post_type": PostType.TASK_COMPLETION,
                "content": f"Completed Week {task.week_number} task: {task.title} {task.icon}",
                "images": [photo_url],
                "task_completion_id": None,
                "location": location,
                "is_auto_generated": True,
            })

            try:
                completion = self.storage.insert(TASK_COMPLETIONS, {
                    "user_id": user_id,
                    "member_id": user.member_id,
                    "task_id": task_id,
                    "week_number": task.week_number,
                    "photo_url": photo_url,
                    "latitude": latitude,
                    "longitude": longitude,
                    "location_address": location_address,
                    "points_earned": task.points_reward,
                    "social_post_id": post["id"],
                    "completed_at": now,
                })
            except DuplicateKeyError as e:
                raise AlreadyCompletedError("Task already completed") from e

            post = self.storage.find_one_and_update(
                SOCIAL_POSTS, {"id": post["id"]}, set={"task_completion_id": completion["id"]}
            )
            self.wallet.credit(
                user_id,
                task.points_reward,
                PointsSource.SOCIAL_TASKS,
                f"Social task completed: {task.title} → {task.points_reward} points",
                reference_id=completion["id"],
            )

        logger.info(f"{user.member_id} completed task {task_id} (+{task.points_reward} points)")
        return TaskCompletionResult(
            points=task.points_reward,
            completion=TaskCompletion(**completion),
            post=SocialPost(**post),
        )

    def list_posts(self, user_id: Optional[UUID] = None, limit: int = 50) -> list[SocialPost]:
        query = {"user_id": user_id} if user_id else {}
        docs = self.storage.find(SOCIAL_POSTS, query, sort=[("created_at", -1)], limit=limit)
        return [SocialPost(**d) for d in docs]
