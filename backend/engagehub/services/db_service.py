# /engagehub/services/db_service.py

import logging
from motor.motor_asyncio import AsyncIOMotorClient
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Tuple

from engagehub.config.settings import settings
from engagehub.utils.circuit_breaker import RedisCircuitBreaker
from engagehub.utils.metrics import database_operations_counter
from engagehub.services.cache_service import cache_service

logger = logging.getLogger(__name__)

# Constants
DEFAULT_QUERY_LIMIT = 100
PAGINATION_DEFAULT_LIMIT = 20

# role -> (accounts collection, tokens collection)
ROLE_COLLECTIONS: Dict[str, Tuple[str, str]] = {
    "admin": ("admins", "admin_tokens"),
    "agent": ("agents", "agent_tokens"),
    "superadmin": ("superadmins", "superadmin_tokens"),
    "user": ("users", "user_tokens"),
}

# Fields never returned from account lookups meant for API responses
PRIVATE_ACCOUNT_FIELDS = {"password": 0, "otp": 0, "otp_expires_at": 0}


class DatabaseService:
    """
    All MongoDB access: accounts and their token rows, the admin-owned
    resources, calls, notifications, activity logs, workflows and sessions,
    and the unified tracking event log.
    """

    def __init__(self, mongo_uri: str):
        try:
            self.client = AsyncIOMotorClient(
                mongo_uri,
                maxPoolSize=settings.max_pool_size,
                minPoolSize=settings.min_pool_size,
                tls=settings.mongo_ssl,
                serverSelectionTimeoutMS=5000,
                connectTimeoutMS=10000,
                tz_aware=True,
            )
            self.db = self.client.get_default_database()
            self.circuit_breaker = RedisCircuitBreaker(cache_service.redis, "database")
            logger.info("MongoDB client initialized successfully.")
        except Exception as e:
            logger.error(f"Error initializing MongoDB client: {e}")
            raise

    # ==================== Helper Methods ====================

    @staticmethod
    def to_object_id(obj_id: Any) -> Optional[ObjectId]:
        """Convert a string to an ObjectId; None when it is not a valid id."""
        if isinstance(obj_id, ObjectId):
            return obj_id
        if not obj_id or not isinstance(obj_id, str):
            return None
        try:
            return ObjectId(obj_id)
        except InvalidId:
            return None

    def _serialize_id(self, document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Convert ObjectId values (the _id and *_id references) to strings."""
        if not document:
            return document
        for key, value in list(document.items()):
            if isinstance(value, ObjectId):
                document[key] = str(value)
        return document

    def _serialize_ids(self, documents: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self._serialize_id(doc) for doc in documents]

    async def _safe_db_operation(
        self,
        operation,
        use_circuit_breaker: bool = True,
        default_return: Any = None
    ) -> Any:
        """
        Execute a best-effort write (audit trails, security events) whose
        failure must not fail the request.
        """
        try:
            if use_circuit_breaker:
                return await self.circuit_breaker.call(operation)
            return await operation()
        except Exception as e:
            logger.exception(f"Database operation failed: {type(e).__name__}")
            database_operations_counter.labels(operation="db_error", status="failed").inc()
            return default_return

    def _now_utc(self) -> datetime:
        return datetime.now(timezone.utc)

    # ==================== Index Management ====================

    async def create_indexes(self) -> None:
        """Create all necessary database indexes on startup."""
        indexes = [
            ("admins", [("email_id", 1)], {"unique": True}),
            ("agents", [("email_id", 1)], {"unique": True}),
            ("agents", [("admin_id", 1)], {}),
            ("superadmins", [("email_id", 1)], {"unique": True}),
            ("users", [("phone", 1)], {"unique": True}),
            ("users", [("admin_id", 1)], {}),
            ("admin_tokens", [("account_id", 1), ("token_type", 1)], {"unique": True}),
            ("agent_tokens", [("account_id", 1), ("token_type", 1)], {"unique": True}),
            ("superadmin_tokens", [("account_id", 1), ("token_type", 1)], {"unique": True}),
            ("user_tokens", [("account_id", 1), ("token_type", 1)], {"unique": True}),
            ("user_tokens", [("token", 1)], {}),
            ("products", [("admin_id", 1), ("catalog_id", 1)], {}),
            ("product_catalogs", [("admin_id", 1), ("is_default", 1)], {}),
            ("whatsapp_templates", [("admin_id", 1), ("name", 1)], {"unique": True}),
            ("calls", [("call_sid", 1)], {"unique": True}),
            ("calls", [("admin_id", 1), ("created_at", -1)], {}),
            ("notifications", [("admin_id", 1), ("status", 1), ("created_at", -1)], {}),
            ("notifications", [("for_super_admin", 1), ("status", 1)], {}),
            ("activity_logs", [("admin_id", 1), ("created_at", -1)], {}),
            ("workflows", [("admin_id", 1)], {}),
            ("user_sessions", [("phone", 1), ("status", 1)], {}),
            ("unified_tracking_events", [("workflow_id", 1), ("timestamp", -1)], {}),
            ("unified_tracking_events", [("event_category", 1), ("event_type", 1)], {}),
            ("unified_tracking_events", [("user_id", 1), ("timestamp", -1)], {}),
            ("message_logs", [("wamid", 1)], {"unique": True, "sparse": True}),
            ("security_events", [("timestamp", -1)], {}),
        ]

        for collection, keys, options in indexes:
            try:
                await self.db[collection].create_index(keys, **options)
                logger.debug(f"Created index on {collection}: {keys}")
            except Exception as e:
                logger.error(f"Failed to create index on {collection} {keys}: {e}")

        logger.info("Database indexes created successfully.")

    async def health_check(self) -> bool:
        try:
            await self.client.admin.command('ping')
            return True
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return False

    # ==================== Accounts ====================

    async def find_account_by_email(self, role: str, email_id: str) -> Optional[Dict[str, Any]]:
        """Raw account document (password hash included) for login checks."""
        accounts, _ = ROLE_COLLECTIONS[role]
        return await self.db[accounts].find_one({"email_id": email_id.strip().lower()})

    async def get_account(self, role: str, account_id: str) -> Optional[Dict[str, Any]]:
        oid = self.to_object_id(account_id)
        if not oid:
            return None
        accounts, _ = ROLE_COLLECTIONS[role]
        account = await self.db[accounts].find_one({"_id": oid}, PRIVATE_ACCOUNT_FIELDS)
        return self._serialize_id(account)

    async def create_admin(self, admin_data: Dict[str, Any]) -> str:
        """Admins start inactive until a superadmin approves them."""
        now = self._now_utc()
        admin_data["email_id"] = admin_data["email_id"].strip().lower()
        admin_data.setdefault("status", False)
        admin_data.setdefault("registration_status", "pending")
        admin_data.update({"created_at": now, "updated_at": now})
        result = await self.db.admins.insert_one(admin_data)
        database_operations_counter.labels(operation="create_admin", status="success").inc()
        return str(result.inserted_id)

    async def create_superadmin(self, data: Dict[str, Any]) -> str:
        now = self._now_utc()
        data["email_id"] = data["email_id"].strip().lower()
        data.update({"status": True, "created_at": now, "updated_at": now})
        result = await self.db.superadmins.insert_one(data)
        return str(result.inserted_id)

    async def list_admins(self, status: Optional[str] = None, limit: int = DEFAULT_QUERY_LIMIT) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if status:
            query["registration_status"] = status
        cursor = self.db.admins.find(query, PRIVATE_ACCOUNT_FIELDS).sort("created_at", -1).limit(limit)
        return self._serialize_ids(await cursor.to_list(length=limit))

    async def set_admin_registration(self, admin_id: str, approved: bool, reviewer_id: str, reason: Optional[str] = None) -> Optional[Dict[str, Any]]:
        oid = self.to_object_id(admin_id)
        if not oid:
            return None
        update = {
            "status": approved,
            "registration_status": "approved" if approved else "rejected",
            "reviewed_by": self.to_object_id(reviewer_id),
            "reviewed_at": self._now_utc(),
            "rejection_reason": None if approved else reason,
            "updated_at": self._now_utc(),
        }
        admin = await self.db.admins.find_one_and_update(
            {"_id": oid}, {"$set": update},
            projection=PRIVATE_ACCOUNT_FIELDS,
            return_document=ReturnDocument.AFTER,
        )
        return self._serialize_id(admin)

    async def touch_last_login(self, role: str, account_id: str) -> None:
        accounts, _ = ROLE_COLLECTIONS[role]
        await self._safe_db_operation(
            lambda: self.db[accounts].update_one(
                {"_id": self.to_object_id(account_id)},
                {"$set": {"last_login_at": self._now_utc()}}
            )
        )

    # ==================== Tokens (session rows) ====================

    async def save_login_token(self, role: str, account_id: str, token: str, expires_at: Optional[datetime] = None) -> None:
        """One login row per account; a new login replaces the previous token."""
        _, tokens = ROLE_COLLECTIONS[role]
        await self.db[tokens].update_one(
            {"account_id": self.to_object_id(account_id), "token_type": "login"},
            {
                "$set": {"token": token, "expires_at": expires_at, "updated_at": self._now_utc()},
                "$setOnInsert": {"created_at": self._now_utc()},
            },
            upsert=True,
        )

    async def get_login_token(self, role: str, account_id: str, token: str) -> Optional[Dict[str, Any]]:
        oid = self.to_object_id(account_id)
        if not oid:
            return None
        _, tokens = ROLE_COLLECTIONS[role]
        return await self.db[tokens].find_one({"account_id": oid, "token": token, "token_type": "login"})

    async def revoke_login_token(self, role: str, account_id: str, token: str) -> bool:
        """Logout keeps the row and nulls the token."""
        _, tokens = ROLE_COLLECTIONS[role]
        result = await self.db[tokens].update_one(
            {"account_id": self.to_object_id(account_id), "token": token, "token_type": "login"},
            {"$set": {"token": None, "updated_at": self._now_utc()}}
        )
        return result.modified_count > 0

    # ==================== Agents ====================

    async def create_agent(self, admin_id: str, agent_data: Dict[str, Any]) -> Dict[str, Any]:
        now = self._now_utc()
        agent_data["email_id"] = agent_data["email_id"].strip().lower()
        agent_data.update({
            "admin_id": self.to_object_id(admin_id),
            "status": True,
            "is_online": False,
            "current_lead_count": 0,
            "created_at": now,
            "updated_at": now,
        })
        result = await self.db.agents.insert_one(agent_data)
        return await self.get_account("agent", str(result.inserted_id))

    async def list_agents(self, admin_id: str, role: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {"admin_id": self.to_object_id(admin_id)}
        if role:
            query["role"] = role
        cursor = self.db.agents.find(query, PRIVATE_ACCOUNT_FIELDS).sort("created_at", -1)
        return self._serialize_ids(await cursor.to_list(length=DEFAULT_QUERY_LIMIT))

    async def update_agent(self, agent_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updates["updated_at"] = self._now_utc()
        agent = await self.db.agents.find_one_and_update(
            {"_id": self.to_object_id(agent_id)}, {"$set": updates},
            projection=PRIVATE_ACCOUNT_FIELDS,
            return_document=ReturnDocument.AFTER,
        )
        return self._serialize_id(agent)

    async def delete_agent(self, agent_id: str) -> bool:
        oid = self.to_object_id(agent_id)
        result = await self.db.agents.delete_one({"_id": oid})
        await self.db.agent_tokens.delete_many({"account_id": oid})
        return result.deleted_count > 0

    # ==================== Users ====================

    async def get_user_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        return await self.db.users.find_one({"phone": phone})

    async def create_user(self, phone: str, admin_id: Optional[str] = None, name: Optional[str] = None) -> Dict[str, Any]:
        now = self._now_utc()
        user = {
            "phone": phone,
            "name": name,
            "admin_id": self.to_object_id(admin_id),
            "status": True,
            "is_otp_verified": False,
            "is_pan_verified": False,
            "is_aadhaar_verified": False,
            "is_aadhaar_validated": False,
            "is_bank_verified": False,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.db.users.insert_one(user)
        user["_id"] = result.inserted_id
        return user

    async def set_user_otp(self, user_id: Any, otp: str, expires_at: datetime) -> None:
        await self.db.users.update_one(
            {"_id": self.to_object_id(user_id)},
            {"$set": {"otp": otp, "otp_expires_at": expires_at, "is_otp_verified": False, "updated_at": self._now_utc()}}
        )

    async def mark_user_otp_verified(self, user_id: Any) -> None:
        await self.db.users.update_one(
            {"_id": self.to_object_id(user_id)},
            {"$set": {"is_otp_verified": True, "updated_at": self._now_utc()},
             "$unset": {"otp": "", "otp_expires_at": ""}}
        )

    async def update_user_flags(self, user_id: str, flags: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        flags["updated_at"] = self._now_utc()
        user = await self.db.users.find_one_and_update(
            {"_id": self.to_object_id(user_id)}, {"$set": flags},
            projection=PRIVATE_ACCOUNT_FIELDS,
            return_document=ReturnDocument.AFTER,
        )
        return self._serialize_id(user)

    async def list_users(self, admin_id: str, page: int = 1, limit: int = PAGINATION_DEFAULT_LIMIT) -> Tuple[List[Dict[str, Any]], int]:
        query = {"admin_id": self.to_object_id(admin_id)}
        total = await self.db.users.count_documents(query)
        cursor = self.db.users.find(query, PRIVATE_ACCOUNT_FIELDS).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
        return self._serialize_ids(await cursor.to_list(length=limit)), total

    # ==================== Products ====================

    async def create_product(self, admin_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        now = self._now_utc()
        data.update({
            "admin_id": self.to_object_id(admin_id),
            "catalog_id": self.to_object_id(data.get("catalog_id")),
            "created_at": now,
            "updated_at": now,
        })
        result = await self.db.products.insert_one(data)
        data["_id"] = result.inserted_id
        return self._serialize_id(data)

    async def insert_document(self, collection: str, admin_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        now = self._now_utc()
        data.update({"admin_id": self.to_object_id(admin_id), "created_at": now, "updated_at": now})
        result = await self.db[collection].insert_one(data)
        data["_id"] = result.inserted_id
        return self._serialize_id(data)

    async def get_document(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Fetch any admin-owned resource by id; the caller checks ownership."""
        oid = self.to_object_id(doc_id)
        if not oid:
            return None
        return self._serialize_id(await self.db[collection].find_one({"_id": oid}))

    async def list_documents(
        self,
        collection: str,
        query: Dict[str, Any],
        page: int = 1,
        limit: int = PAGINATION_DEFAULT_LIMIT,
        sort_field: str = "created_at",
    ) -> Tuple[List[Dict[str, Any]], int]:
        total = await self.db[collection].count_documents(query)
        cursor = self.db[collection].find(query).sort(sort_field, -1).skip((page - 1) * limit).limit(limit)
        return self._serialize_ids(await cursor.to_list(length=limit)), total

    async def update_document(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updates["updated_at"] = self._now_utc()
        doc = await self.db[collection].find_one_and_update(
            {"_id": self.to_object_id(doc_id)}, {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        return self._serialize_id(doc)

    async def delete_document(self, collection: str, doc_id: str) -> bool:
        result = await self.db[collection].delete_one({"_id": self.to_object_id(doc_id)})
        return result.deleted_count > 0

    # ==================== Product Catalogs ====================

    async def create_catalog(self, admin_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """The first catalog an admin creates becomes their default."""
        owner = self.to_object_id(admin_id)
        existing = await self.db.product_catalogs.count_documents({"admin_id": owner})
        now = self._now_utc()
        data.update({
            "admin_id": owner,
            "status": "draft",
            "is_default": existing == 0,
            "created_at": now,
            "updated_at": now,
        })
        result = await self.db.product_catalogs.insert_one(data)
        data["_id"] = result.inserted_id
        return self._serialize_id(data)

    async def count_catalog_products(self, catalog_id: str) -> int:
        return await self.db.products.count_documents({"catalog_id": self.to_object_id(catalog_id)})

    async def set_default_catalog(self, admin_id: str, catalog_id: str) -> Optional[Dict[str, Any]]:
        # Two writes, no transaction: a crash in between leaves no default
        owner = self.to_object_id(admin_id)
        await self.db.product_catalogs.update_many(
            {"admin_id": owner, "is_default": True},
            {"$set": {"is_default": False, "updated_at": self._now_utc()}}
        )
        return await self.update_document("product_catalogs", catalog_id, {"is_default": True})

    # ==================== Calls ====================

    async def insert_call(self, call_data: Dict[str, Any]) -> str:
        now = self._now_utc()
        for ref in ("admin_id", "user_id", "workflow_id"):
            if call_data.get(ref):
                call_data[ref] = self.to_object_id(call_data[ref])
        call_data.setdefault("created_at", now)
        call_data["updated_at"] = now
        result = await self.db.calls.insert_one(call_data)
        return str(result.inserted_id)

    async def get_call_by_sid(self, call_sid: str) -> Optional[Dict[str, Any]]:
        return self._serialize_id(await self.db.calls.find_one({"call_sid": call_sid}))

    async def update_call_by_sid(self, call_sid: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updates["updated_at"] = self._now_utc()
        call = await self.db.calls.find_one_and_update(
            {"call_sid": call_sid}, {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        return self._serialize_id(call)

    # ==================== Notifications ====================

    async def create_notification(self, notification: Dict[str, Any]) -> Optional[str]:
        now = self._now_utc()
        for ref in ("admin_id", "agent_id"):
            notification[ref] = self.to_object_id(notification.get(ref))
        notification.setdefault("status", "unread")
        notification.setdefault("priority", "medium")
        notification.setdefault("for_super_admin", False)
        notification.update({"created_at": now, "updated_at": now})
        result = await self._safe_db_operation(
            lambda: self.db.notifications.insert_one(notification)
        )
        return str(result.inserted_id) if result else None

    def notification_owner_query(self, role: str, account_id: str) -> Dict[str, Any]:
        if role == "superadmin":
            return {"for_super_admin": True}
        return {f"{role}_id": self.to_object_id(account_id)}

    async def count_unread_notifications(self, owner_query: Dict[str, Any]) -> int:
        return await self.db.notifications.count_documents({**owner_query, "status": "unread"})

    async def set_notification_status(self, owner_query: Dict[str, Any], notification_id: str, status: str) -> bool:
        update: Dict[str, Any] = {"status": status, "updated_at": self._now_utc()}
        if status == "read":
            update["read_at"] = self._now_utc()
        result = await self.db.notifications.update_one(
            {**owner_query, "_id": self.to_object_id(notification_id)}, {"$set": update}
        )
        return result.matched_count > 0

    async def mark_all_notifications_read(self, owner_query: Dict[str, Any]) -> int:
        result = await self.db.notifications.update_many(
            {**owner_query, "status": "unread"},
            {"$set": {"status": "read", "read_at": self._now_utc(), "updated_at": self._now_utc()}}
        )
        return result.modified_count

    # ==================== Activity Logs ====================

    async def log_activity(self, entry: Dict[str, Any]) -> None:
        """Audit trail write; failures are logged and ignored."""
        for ref in ("actor_id", "entity_id", "admin_id"):
            if entry.get(ref):
                entry[ref] = self.to_object_id(entry[ref]) or entry[ref]
        entry.setdefault("status", "success")
        entry["created_at"] = self._now_utc()
        await self._safe_db_operation(lambda: self.db.activity_logs.insert_one(entry))

    # ==================== Workflows & Sessions ====================

    async def create_session(self, workflow: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        now = self._now_utc()
        # Only one active session per phone
        await self.db.user_sessions.update_many(
            {"phone": user.get("phone"), "status": "active"},
            {"$set": {"status": "abandoned", "updated_at": now}}
        )
        session = {
            "workflow_id": self.to_object_id(workflow["_id"]),
            "user_id": self.to_object_id(user["_id"]),
            "admin_id": self.to_object_id(workflow.get("admin_id")),
            "phone": user.get("phone"),
            "current_node_id": None,
            "previous_node_id": None,
            "data": {},
            "status": "active",
            "steps_completed": [],
            "created_at": now,
            "updated_at": now,
        }
        result = await self.db.user_sessions.insert_one(session)
        session["_id"] = result.inserted_id
        return self._serialize_id(session)

    async def get_active_session_by_phone(self, phone: str) -> Optional[Dict[str, Any]]:
        session = await self.db.user_sessions.find_one(
            {"phone": phone, "status": "active"}, sort=[("updated_at", -1)]
        )
        return self._serialize_id(session)

    async def save_session(self, session_id: str, updates: Dict[str, Any]) -> None:
        updates["updated_at"] = self._now_utc()
        await self.db.user_sessions.update_one({"_id": self.to_object_id(session_id)}, {"$set": updates})

    # ==================== Unified Tracking Events ====================

    async def insert_tracking_event(self, event: Dict[str, Any]) -> str:
        """Append one tracking record; errors propagate to the tracker."""
        result = await self.db.unified_tracking_events.insert_one(event)
        database_operations_counter.labels(operation="insert_tracking_event", status="success").inc()
        return str(result.inserted_id)

    async def list_tracking_events(
        self,
        filters: Dict[str, Any],
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], int]:
        return await self.list_documents("unified_tracking_events", filters, page, limit, sort_field="timestamp")

    async def get_unified_analytics(
        self,
        workflow_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        match: Dict[str, Any] = {}
        if workflow_id:
            match["workflow_id"] = workflow_id
        if start or end:
            match["timestamp"] = {}
            if start:
                match["timestamp"]["$gte"] = start
            if end:
                match["timestamp"]["$lte"] = end

        events = self.db.unified_tracking_events

        event_breakdown = await events.aggregate([
            {"$match": match},
            {"$group": {
                "_id": {"category": "$event_category", "type": "$event_type"},
                "count": {"$sum": 1},
                "success_count": {"$sum": {"$cond": [{"$eq": ["$success", True]}, 1, 0]}},
                "avg_execution_time": {"$avg": "$execution_time_ms"},
            }},
            {"$sort": {"count": -1}},
        ]).to_list(length=None)

        kyc_funnel = await events.aggregate([
            {"$match": {**match, "event_category": "kyc", "kyc_step": {"$ne": None}}},
            {"$group": {
                "_id": "$kyc_step",
                "total_attempts": {"$sum": 1},
                "successful_attempts": {"$sum": {"$cond": [{"$eq": ["$success", True]}, 1, 0]}},
                "avg_time": {"$avg": "$execution_time_ms"},
            }},
            {"$addFields": {
                "success_rate": {"$multiply": [{"$divide": ["$successful_attempts", "$total_attempts"]}, 100]}
            }},
            {"$sort": {"_id": 1}},
        ]).to_list(length=None)

        user_journeys = await events.aggregate([
            {"$match": {**match, "session_id": {"$ne": None}}},
            {"$sort": {"timestamp": 1}},
            {"$group": {
                "_id": "$session_id",
                "events": {"$push": {
                    "type": "$event_type",
                    "category": "$event_category",
                    "timestamp": "$timestamp",
                    "success": "$success",
                    "node_name": "$node_name",
                    "kyc_step": "$kyc_step",
                }},
                "total_events": {"$sum": 1},
                "kyc_events": {"$sum": {"$cond": [{"$eq": ["$event_category", "kyc"]}, 1, 0]}},
                "workflow_events": {"$sum": {"$cond": [{"$eq": ["$event_category", "workflow"]}, 1, 0]}},
            }},
            {"$limit": 50},
        ]).to_list(length=None)

        total_events = await events.count_documents(match)

        return {
            "event_breakdown": event_breakdown,
            "kyc_funnel": kyc_funnel,
            "user_journeys": user_journeys,
            "total_events": total_events,
        }

    # ==================== Message & Security Logging ====================

    async def log_message(self, message_data: Dict[str, Any]) -> None:
        await self._safe_db_operation(lambda: self.db.message_logs.insert_one(message_data))

    async def log_security_event(
        self,
        event_type: str,
        ip_address: str,
        details: Dict[str, Any]
    ) -> None:
        event_data = {
            "event_type": event_type,
            "ip_address": ip_address,
            "timestamp": self._now_utc(),
            "details": details
        }
        await self._safe_db_operation(
            lambda: self.db.security_events.insert_one(event_data)
        )


# Globally accessible instance
db_service = DatabaseService(settings.mongo_atlas_uri)
