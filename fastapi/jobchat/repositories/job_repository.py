from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from jobchat.utils.store_errors import translate_store_errors


class JobRepository:
    """Job Directory, used for conversation titles."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("jobs")

    @translate_store_errors
    async def get_job_by_id(self, job_id: str) -> Optional[dict]:
        keys = [job_id, ObjectId(job_id)] if ObjectId.is_valid(job_id) else [job_id]
        job = await self._collection.find_one({"_id": {"$in": keys}}, {"title": 1})
        if job:
            job["_id"] = str(job["_id"])
        return job
