"""Walk a purchase order through the default two-level approval."""

import asyncio
from pathlib import Path

from procureflow import (
    InMemoryAuditLog,
    StaticRoleResolver,
    WorkflowOrchestrator,
    get_repository,
    load_definitions,
)


async def main():
    """Submit a large purchase order and approve it level by level."""
    definitions = load_definitions(Path(__file__).parent / "default_workflows.yaml")
    roles = StaticRoleResolver(
        {
            "buyer": ["data_entry_personnel"],
            "maria": ["procurement_manager"],
            "chen": ["general_manager"],
        }
    )
    audit = InMemoryAuditLog()
    orchestrator = WorkflowOrchestrator(definitions, get_repository(), roles, audit)

    # Above 200000 the general manager has to sign off as well
    instance = await orchestrator.start(
        "purchase_order",
        "po-1001",
        250000,
        submitted_by="buyer",
        document_number="PO-2024-1001",
    )
    print(f"📋 Started {instance.id} with levels {instance.active_level_numbers}")

    for user in ("maria", "chen"):
        waiting = await orchestrator.pending_for(user)
        print(f"⏳ {user} has {len(waiting)} approval(s) waiting")
        instance = await orchestrator.approve(instance.id, user, comment="looks good")
        print(f"✅ {user} approved -> {instance.status} ({instance.progress_percentage}%)")

    for entry in audit.for_instance(instance.id):
        print(f"🔗 {entry.event} by {entry.user_id}")


if __name__ == "__main__":
    asyncio.run(main())
