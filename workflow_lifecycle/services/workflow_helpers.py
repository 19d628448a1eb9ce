"""
Graph repairs applied to every workflow before it is persisted
"""

import copy
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from shared.models.db_models import CredentialsEntity
from shared.models.node_enums import NodeType, TriggerSubtype
from workflow_lifecycle.core.database import DatabaseManager

logger = logging.getLogger(__name__)

START_NODE_NAME = "Start"


def is_start_node(node: Dict[str, Any]) -> bool:
    return (
        node.get("type") == NodeType.TRIGGER.value
        and node.get("subtype") == TriggerSubtype.START.value
    )


def has_start_node(nodes: List[Dict[str, Any]]) -> bool:
    return any(is_start_node(node) for node in nodes)


def get_start_node() -> Dict[str, Any]:
    """A fresh start node; it is the entry point but never a live trigger"""
    return {
        "id": str(uuid.uuid4()),
        "name": START_NODE_NAME,
        "type": NodeType.TRIGGER.value,
        "subtype": TriggerSubtype.START.value,
        "type_version": 1,
        "position": [250.0, 300.0],
        "parameters": {},
        "credentials": {},
        "disabled": False,
    }


def ensure_start_node(nodes: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    nodes = list(nodes)
    if not has_start_node(nodes):
        nodes.append(get_start_node())
    return nodes


def _legacy_reference(value: Any) -> Optional[str]:
    """Credential name of a name-based reference, None for id-based ones"""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and not value.get("id") and value.get("name"):
        return value["name"]
    return None


async def replace_invalid_credentials(
    db: DatabaseManager, nodes: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """
    Rewrite legacy name-based credential references to {"id", "name"}

    Older clients reference credentials as ``{"slackApi": "My Slack"}``. Each
    such reference is resolved by (name, credential type); references that
    cannot be resolved are left untouched.
    """
    nodes = copy.deepcopy(nodes)
    wanted: Dict[Tuple[str, str], None] = {}

    for node in nodes:
        for credential_type, value in (node.get("credentials") or {}).items():
            name = _legacy_reference(value)
            if name is not None:
                wanted[(credential_type, name)] = None

    if not wanted:
        return nodes

    resolved: Dict[Tuple[str, str], str] = {}
    try:
        async with db.session() as session:
            for credential_type, name in wanted:
                result = await session.execute(
                    select(CredentialsEntity.id)
                    .where(CredentialsEntity.type == credential_type)
                    .where(CredentialsEntity.name == name)
                    .limit(1)
                )
                credential_id = result.scalar_one_or_none()
                if credential_id is not None:
                    resolved[(credential_type, name)] = credential_id
    except SQLAlchemyError as e:
        logger.warning(f"Could not resolve legacy credential references: {e}")
        return nodes

    for node in nodes:
        credentials = node.get("credentials") or {}
        for credential_type, value in credentials.items():
            name = _legacy_reference(value)
            if name is None:
                continue
            credential_id = resolved.get((credential_type, name))
            if credential_id is None:
                logger.debug(
                    f"Credential '{name}' ({credential_type}) of node '{node.get('name')}' not found"
                )
                continue
            credentials[credential_type] = {"id": credential_id, "name": name}

    return nodes
