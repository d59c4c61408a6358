# /engagehub/services/workflow_executor.py

import logging
import time
from typing import Any, Dict, Optional

from engagehub.models.domain import UserSession, Workflow
from engagehub.services.db_service import db_service
from engagehub.services.tracking_service import tracking_service
from engagehub.services.whatsapp_service import whatsapp_service
from engagehub.workflows.engine import apply_input, plan_node, should_pause_before

# Runs admin-defined workflows over WhatsApp. Node decisions come from the
# pure engine; this module does the I/O: session persistence, message
# sending and a tracking event for every step.

logger = logging.getLogger(__name__)

# Upper bound on nodes executed per trigger so a cyclic graph cannot spin
MAX_STEPS_PER_RUN = 50


class WorkflowExecutor:
    def __init__(self, db=db_service, whatsapp=whatsapp_service, tracker=tracking_service):
        self.db = db
        self.whatsapp = whatsapp
        self.tracker = tracker

    async def start_session(self, workflow_doc: Dict[str, Any], user: Dict[str, Any]) -> UserSession:
        workflow = Workflow.from_document(workflow_doc)
        session = UserSession.from_document(await self.db.create_session(workflow_doc, user))
        logger.info(f"Workflow session {session.id} started for {workflow.name}")

        await self.tracker.safely(self.tracker.track_workflow_start(workflow, session, user))
        return await self.run_from(workflow, session, workflow.start_node_id, user)

    async def handle_input(self, session_doc: Dict[str, Any], text: str) -> Optional[UserSession]:
        """Feed a user reply into the input node the session is waiting on."""
        session = UserSession.from_document(session_doc)
        workflow_doc = await self.db.get_document("workflows", session.workflow_id)
        if not workflow_doc:
            logger.error(f"Workflow {session.workflow_id} for session {session.id} not found")
            return None
        workflow = Workflow.from_document(workflow_doc)
        node = workflow.get_node(session.current_node_id)
        if node is None:
            logger.error(f"Session {session.id} points at unknown node {session.current_node_id}")
            return None

        result = apply_input(node, session.data, text)
        if not result["accepted"]:
            logger.warning(f"Input ignored for session {session.id}: {result['reason']}")
            return session

        session.data = result["data"]
        session.steps_completed.append(node.node_id)
        await self.db.save_session(session.id, {"data": session.data, "steps_completed": session.steps_completed})
        await self.tracker.safely(self.tracker.track_user_input(node, session, None, node.variable_name, text))

        if not result["next_node_id"]:
            return await self.complete(workflow, session)
        return await self.run_from(workflow, session, result["next_node_id"])

    async def run_from(
        self, workflow: Workflow, session: UserSession, node_id: Optional[str], user: Optional[Dict[str, Any]] = None
    ) -> UserSession:
        for _ in range(MAX_STEPS_PER_RUN):
            node = workflow.get_node(node_id)
            if node is None:
                logger.error(f"Node {node_id} not found in workflow {workflow.id}")
                return session

            session.previous_node_id, session.current_node_id = session.current_node_id, node.node_id
            await self.db.save_session(session.id, {
                "current_node_id": session.current_node_id,
                "previous_node_id": session.previous_node_id,
            })

            started = time.perf_counter()
            step = plan_node(node, session.data)

            if step["action"] == "unsupported":
                logger.warning(f"Unsupported node type '{node.type}' in workflow {workflow.id}")
                return session

            sent_ok = True
            if step["message"]:
                message_id = await self.whatsapp.send_message(
                    session.phone, step["message"],
                    metadata={"session_id": session.id, "node_id": node.node_id},
                )
                sent_ok = message_id is not None

            if step["action"] == "branch":
                await self.tracker.safely(self.tracker.track_condition_evaluation(
                    node, session, user, node.condition, step["condition_result"], step["next_node_id"]))

            elapsed_ms = (time.perf_counter() - started) * 1000
            await self.tracker.safely(self.tracker.track_node_execution(
                node, session, user,
                success=sent_ok,
                execution_time_ms=elapsed_ms,
                error_message=None if sent_ok else "WhatsApp message could not be sent",
                workflow_name=workflow.name,
            ))

            if step["wait_for_input"]:
                return session

            if step["action"] == "send":
                session.steps_completed.append(node.node_id)
                await self.db.save_session(session.id, {"steps_completed": session.steps_completed})

            next_node_id = step["next_node_id"]
            if not next_node_id:
                if step["action"] == "send":
                    return await self.complete(workflow, session, user)
                logger.error(f"Condition node {node.node_id} has no {'true' if step['condition_result'] else 'false'} branch")
                return session

            if should_pause_before(workflow, next_node_id):
                session.previous_node_id, session.current_node_id = session.current_node_id, next_node_id
                await self.db.save_session(session.id, {
                    "current_node_id": session.current_node_id,
                    "previous_node_id": session.previous_node_id,
                })
                return session
            node_id = next_node_id

        logger.error(f"Workflow {workflow.id} exceeded {MAX_STEPS_PER_RUN} steps for session {session.id}; stopping")
        return session

    async def complete(self, workflow: Workflow, session: UserSession, user: Optional[Dict[str, Any]] = None) -> UserSession:
        session.status = "completed"
        await self.db.save_session(session.id, {"status": "completed"})
        logger.info(f"Workflow session {session.id} completed")
        await self.tracker.safely(self.tracker.track_workflow_completion(
            workflow, session, user,
            completed_steps=len(set(session.steps_completed)),
            total_nodes=len(workflow.nodes),
        ))
        return session


# Globally accessible instance
workflow_executor = WorkflowExecutor()
