"""
Node Type and Subtype Enums - Single Source of Truth

All services use these enums directly when inspecting a workflow graph.
"""

from enum import Enum


class NodeType(str, Enum):
    """Core node categories of a workflow graph"""

    TRIGGER = "TRIGGER"
    ACTION = "ACTION"
    EXTERNAL_ACTION = "EXTERNAL_ACTION"
    FLOW = "FLOW"
    AI_AGENT = "AI_AGENT"
    TOOL = "TOOL"
    MEMORY = "MEMORY"
    HUMAN_IN_THE_LOOP = "HUMAN_IN_THE_LOOP"


class TriggerSubtype(str, Enum):
    """Trigger node subtypes

    START is the entry point every persisted graph carries. It marks where a
    manual run begins and is never wired into the dispatch layer.
    """

    START = "START"
    MANUAL = "MANUAL"
    WEBHOOK = "WEBHOOK"
    CRON = "CRON"


class RoleScope(str, Enum):
    GLOBAL = "global"
    WORKFLOW = "workflow"
    CREDENTIAL = "credential"


class RoleName(str, Enum):
    OWNER = "owner"
    MEMBER = "member"
